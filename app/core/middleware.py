"""HTTP middleware for request ID propagation and timing.

Every response carries the request's correlation id (taken from the incoming
header or generated) and its total handling time. The id is stored in a
contextvar for the duration of the request so log records pick it up.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.config import get_request_settings
from app.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach ``X-Request-ID`` and ``X-Request-Duration-ms`` to the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with correlation headers added.
    """
    header_name = get_request_settings(request).log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}")
    return response
