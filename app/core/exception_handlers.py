"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → HTTP status from ``STATUS_BY_ERROR`` (400 default)
- RateLimitExceededError → 429 with Retry-After / X-RateLimit-* headers
- Request body validation → wrapped in ValidationAppError → 400
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

from __future__ import annotations

import logging
import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import get_request_settings
from app.core.errors import (
    AppError,
    ConfigurationAppError,
    EncryptionAppError,
    GatewayAppError,
    GatewayDeclinedError,
    RateLimitExceededError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Checked in order; first isinstance match wins
STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (RateLimitExceededError, 429),
    (GatewayAppError, 502),
    (GatewayDeclinedError, 400),
    (ConfigurationAppError, 500),
    (EncryptionAppError, 500),
    (ValidationAppError, 400),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _error_body(code: str, message: str, details: dict | None = None) -> dict:
    content = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        content["details"] = details
    return {"error": content}


def _rate_limit_headers(exc: RateLimitExceededError, *, include_limit_headers: bool) -> dict[str, str]:
    headers = {"Retry-After": str(max(0, math.ceil(exc.reset_time)))}
    if include_limit_headers:
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = "0"
        headers["X-RateLimit-Reset"] = str(max(0, math.ceil(exc.reset_time)))
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = _rate_limit_headers(
            exc,
            include_limit_headers=get_request_settings(request).app.rate_limit_include_headers,
        )
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, dict(exc.details) if exc.details else None),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body/query validation failures as a 400 ``ValidationAppError``.

    Input values are dropped from the error list so card data never echoes back.
    """
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    logger.warning(
        "request_validation_failed",
        extra={"error_count": len(errors), "request_path": request.url.path},
    )
    error = ValidationAppError(
        code="validation_error",
        message="Request validation failed",
        details={"errors": errors},
    )
    return await app_error_handler(request, error)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the error type for debugging while returning a generic message;
    no stack traces or exception text reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(Exception)(general_exception_handler)
