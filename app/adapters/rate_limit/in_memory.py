"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Windows start at a token's first request and reset wholesale once expired.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.core.errors import RateLimitExceededError
from app.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

# Upper bound for the background sweep cadence
MAX_CLEANUP_INTERVAL_SECONDS = 60.0


@dataclass
class _WindowState:
    window_start: float
    count: int


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per token.

    Each token gets its own window that begins with its first request. Once
    ``interval_seconds`` have passed since that start, the next request opens
    a fresh window. At most ``max_tracked`` tokens are kept; when the table
    grows past that, the token with the oldest window is dropped.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        interval_seconds: float,
        max_tracked: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of allowed requests per window.
            interval_seconds: Size of the window in seconds.
            max_tracked: Maximum number of distinct tokens kept in memory.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If any argument is out of range.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if max_tracked < 1:
            raise ValueError("max_tracked must be >= 1")

        self._limit = limit
        self._interval = interval_seconds
        self._max_tracked = max_tracked
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_token: dict[str, _WindowState] = {}
        self._cleanup = PeriodicTask(
            "rate_limit.cleanup",
            self.sweep,
            min(interval_seconds * 2, MAX_CLEANUP_INTERVAL_SECONDS),
        )

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def cleanup_interval_seconds(self) -> float:
        return self._cleanup.interval_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_token)

    def _is_expired(self, state: _WindowState, now: float) -> bool:
        return now - state.window_start > self._interval

    def _get_or_reset_state_locked(self, token: str, now: float) -> _WindowState:
        """Get the current state for token, opening a fresh window when needed."""
        state = self._state_by_token.get(token)
        if state is None or self._is_expired(state, now):
            state = _WindowState(window_start=now, count=0)
            self._state_by_token[token] = state
        return state

    def _reset_if_expired_locked(self, token: str, now: float) -> _WindowState | None:
        state = self._state_by_token.get(token)
        if state is not None and self._is_expired(state, now):
            state = _WindowState(window_start=now, count=0)
            self._state_by_token[token] = state
        return state

    def _evict_oldest_if_over_capacity_locked(self) -> None:
        if len(self._state_by_token) <= self._max_tracked:
            return
        oldest = min(self._state_by_token, key=lambda t: self._state_by_token[t].window_start)
        self._state_by_token.pop(oldest, None)
        logger.debug("rate_limit.evicted", extra={"tracked": len(self._state_by_token)})

    def check(self, token: str) -> RateLimitResult:
        """Count one request for ``token`` or reject it.

        The expiry check, the limit comparison and the increment happen under
        one lock acquisition so concurrent requests cannot lose updates.

        Args:
            token: Unique identifier for rate limiting (e.g., hashed IP).

        Returns:
            RateLimitResult with the remaining budget.

        Raises:
            ValueError: If token is empty.
            RateLimitExceededError: If the budget for the window is used up.
        """
        if not token:
            raise ValueError("token must be a non-empty string")

        with self._lock:
            now = self._clock()
            state = self._get_or_reset_state_locked(token, now)
            reset_at = state.window_start + self._interval

            if state.count >= self._limit:
                reset_time = max(0.0, reset_at - now)
                raise RateLimitExceededError(
                    code="rate_limit_exceeded",
                    message="Too many requests. Please wait and try again.",
                    details={"retry_after": reset_time, "limit": self._limit},
                    reset_time=reset_time,
                    limit=self._limit,
                )

            state.count += 1
            remaining = max(0, self._limit - state.count)
            self._evict_oldest_if_over_capacity_locked()

        return RateLimitResult(
            allowed=True,
            limit=self._limit,
            remaining=remaining,
            reset_at=reset_at,
        )

    def remaining(self, token: str) -> int:
        with self._lock:
            state = self._reset_if_expired_locked(token, self._clock())
            if state is None:
                return self._limit
            return max(0, self._limit - state.count)

    def reset_time(self, token: str) -> float:
        with self._lock:
            state = self._state_by_token.get(token)
            if state is None:
                return 0.0
            return max(0.0, state.window_start + self._interval - self._clock())

    def sweep(self) -> int:
        """Drop every token whose window has expired.

        Returns:
            Number of tokens removed.
        """
        with self._lock:
            now = self._clock()
            expired = [t for t, s in self._state_by_token.items() if self._is_expired(s, now)]
            for token in expired:
                del self._state_by_token[token]

        if expired:
            logger.debug("rate_limit.swept", extra={"removed": len(expired)})
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the background sweep; requires a running event loop."""
        self._cleanup.start()

    def destroy(self) -> None:
        self._cleanup.stop()
        with self._lock:
            self._state_by_token.clear()
