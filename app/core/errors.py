"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context returned to clients under ``error.details``."""

    hint: str
    http_status: int
    retry_after: float
    limit: int
    gateway_code: str
    errors: list[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a client exhausted its budget for the current window.

    Attributes:
        reset_time: Seconds until the client's window resets (never negative).
        limit: Configured budget per window.
    """

    reset_time: float = 0.0
    limit: int = 0


class GatewayAppError(AppError):
    """Raised when the payment gateway is unreachable or answers non-200."""


class GatewayDeclinedError(AppError):
    """Raised when the payment gateway explicitly rejects a transaction."""


class ConfigurationAppError(AppError):
    """Raised when a required runtime setting is missing."""


class EncryptionAppError(AppError):
    """Raised when encrypting or decrypting a payload fails."""
