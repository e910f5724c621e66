"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Explicit ownership: the limiter is built by the app factory and lives on
  ``app.state``; nothing here holds module-level state.
- No raw addresses in logs or limiter state: identities are hashed first.

Client identity:
- The trusted edge proxy header (``cf-connecting-ip`` by default) wins.
- Otherwise the first hop of ``X-Forwarded-For``.
- Otherwise the literal ``"unknown"``.
"""

from __future__ import annotations

import logging

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.core.config import get_request_settings
from app.core.errors import RateLimitExceededError
from app.core.logging import hash_identity

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter owned by the running application."""
    return request.app.state.rate_limiter


def get_client_ip(request: Request) -> str:
    """Resolve the client address from proxy headers.

    Args:
        request: FastAPI request.

    Returns:
        str: Client IP, or ``"unknown"`` when no header identifies it.
    """
    trusted = request.headers.get(get_request_settings(request).app.trusted_proxy_header)
    if trusted and trusted.strip():
        return trusted.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return UNKNOWN_CLIENT


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing rate limits.

    When enabled, counts one request against the caller's budget. The
    ``RateLimitExceededError`` raised on exhaustion is rendered as HTTP 429
    with ``Retry-After`` by the global exception handlers.

    Args:
        request: FastAPI request.

    Raises:
        RateLimitExceededError: When the caller's budget is used up.
    """
    if not get_request_settings(request).app.rate_limit_enabled:
        return

    limiter = get_rate_limiter(request)
    token = hash_identity(get_client_ip(request))

    try:
        result = limiter.check(token)
    except RateLimitExceededError as exc:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": token,
                "limit": exc.limit,
                "retry_after_s": round(exc.reset_time, 3),
                "path": request.url.path,
            },
        )
        raise

    logger.info(
        "rate_limit.allowed",
        extra={
            "key_hash": token,
            "limit": result.limit,
            "remaining": result.remaining,
            "path": request.url.path,
        },
    )
