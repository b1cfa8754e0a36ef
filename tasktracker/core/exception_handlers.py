"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 403, 404, 429, 503)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from tasktracker.core.errors import (
    AppError,
    AuthenticationAppError,
    CircuitOpenError,
    NotFoundAppError,
    RateLimitExceededError,
)
from tasktracker.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _error_content(exc: AppError) -> dict:
    content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        content["details"] = exc.details
    return content


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Map a rate limit rejection to HTTP 429.

    The body carries the retry metadata at top level (limit, remaining,
    resetTime, retryAfter) next to the usual error object; headers repeat it
    for clients that only look at headers. Nothing identifies the caller.
    """
    reset_iso = exc.reset_time_iso
    headers = {
        "X-RateLimit-Limit": str(exc.limit),
        "X-RateLimit-Remaining": str(exc.remaining),
        "X-RateLimit-Reset": reset_iso,
        "Retry-After": str(exc.retry_after_seconds),
    }

    return JSONResponse(
        status_code=429,
        headers=headers,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "request_id": get_request_id(),
            },
            "limit": exc.limit,
            "remaining": exc.remaining,
            "resetTime": reset_iso,
            "retryAfter": exc.retry_after_seconds,
        },
    )


async def circuit_open_handler(request: Request, exc: CircuitOpenError) -> JSONResponse:
    """Map an open circuit to HTTP 503 Service Unavailable."""
    logger.warning(
        "circuit_open_handled",
        extra={
            "dependency": exc.dependency,
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
    )

    headers = {}
    if exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after_seconds)))

    return JSONResponse(
        status_code=503,
        headers=headers or None,
        content={"error": _error_content(exc)},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationAppError → 403 Forbidden (authorization fault)
    - NotFoundAppError → 404 Not Found

    Rate limit and circuit errors have dedicated handlers but are routed here
    too when a subclass handler is not registered.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    if isinstance(exc, RateLimitExceededError):
        return await rate_limit_exceeded_handler(request, exc)
    if isinstance(exc, CircuitOpenError):
        return await circuit_open_handler(request, exc)

    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, NotFoundAppError):
        status_code = 404

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": _error_content(exc)},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces or exception text reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Specific handlers are registered before the general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(CircuitOpenError)(circuit_open_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
