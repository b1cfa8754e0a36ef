"""HTTP middleware for request correlation and access logging.

Every request gets a correlation id, taken from the incoming request id
header (``LOG_REQUEST_ID_HEADER``, default ``X-Request-ID``) or generated.
The id is bound in a contextvar for the duration of the request so every
log record emitted while handling it carries the id, then echoed back in
the response headers together with the handling time.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from tasktracker.core.config import settings
from tasktracker.core.logging import clear_request_id, set_request_id

logger = logging.getLogger("tasktracker.access")


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id, time the request and log one access line.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` and
            ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
