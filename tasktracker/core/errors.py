"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    limit: int
    remaining: int
    reset_time: str
    dependency: str
    request_id: str
    context: NotRequired[dict[str, Any]]


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


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class NotFoundAppError(AppError):
    """Raised when a named resource does not exist."""


class RateLimitExceededError(AppError):
    """Raised by the rate limit guard when a caller exhausted its window.

    Carries the retry metadata the HTTP boundary needs for the 429 response.
    Never carries the client identifier or its hash.
    """

    def __init__(
        self,
        *,
        limit: int,
        remaining: int,
        reset_time_ms: int,
        retry_after_seconds: int,
    ) -> None:
        self.limit = limit
        self.remaining = remaining
        self.reset_time_ms = reset_time_ms
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            code="rate_limit_exceeded",
            message=f"Rate limit exceeded. Try again in {retry_after_seconds} seconds.",
            details={
                "limit": limit,
                "remaining": remaining,
                "reset_time": self.reset_time_iso,
                "retry_after": retry_after_seconds,
            },
        )

    @property
    def reset_time_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_time_ms / 1000, tz=timezone.utc).isoformat()


class CircuitOpenError(AppError):
    """Raised instead of calling a dependency whose circuit is open.

    Distinct from whatever the protected operation raises so callers can
    branch to a fallback.
    """

    def __init__(self, dependency: str, *, retry_after_seconds: float | None = None) -> None:
        self.dependency = dependency
        self.retry_after_seconds = retry_after_seconds
        details: ErrorDetails = {"dependency": dependency}
        if retry_after_seconds is not None:
            details["retry_after"] = retry_after_seconds
        super().__init__(
            code="circuit_open",
            message=f"circuit open for {dependency}",
            details=details,
        )
