"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of an allowed rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window.
        reset_at: UNIX epoch seconds when the current window resets.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check(self, token: str) -> RateLimitResult:
        """Count one request for ``token``.

        Args:
            token: Opaque client identity (e.g., hashed IP address).

        Returns:
            RateLimitResult for an allowed request.

        Raises:
            RateLimitExceededError: If the token exhausted its budget.
        """
        raise NotImplementedError

    @abstractmethod
    def remaining(self, token: str) -> int:
        """Return how many requests ``token`` may still make in its window."""
        raise NotImplementedError

    @abstractmethod
    def reset_time(self, token: str) -> float:
        """Return seconds until the window of ``token`` resets (0 if untracked)."""
        raise NotImplementedError

    @abstractmethod
    def destroy(self) -> None:
        """Stop background work and drop all state."""
        raise NotImplementedError
