"""Operator endpoints for the resilience layer.

All routes require an API key and are themselves rate limited.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from tasktracker.adapters.rate_limit.base import AbstractRateLimiter
from tasktracker.core.auth import verify_api_key
from tasktracker.core.config import settings
from tasktracker.core.dependencies import get_circuit_breakers
from tasktracker.core.errors import NotFoundAppError
from tasktracker.core.rate_limit import (
    default_policy,
    get_client_key,
    get_rate_limiter,
    rate_limit,
)
from tasktracker.schemas.resilience import (
    CircuitBreakerStatus,
    CircuitBreakerStatusResponse,
    RateLimitInfoResponse,
)
from tasktracker.services.circuit_breaker import CircuitBreakerRegistry

router = APIRouter(
    prefix="/resilience",
    tags=["Resilience"],
    dependencies=[
        Depends(verify_api_key),
        Depends(
            rate_limit(
                limit=settings.rate_limit.default_limit,
                window_ms=settings.rate_limit.default_window_ms,
            )
        ),
    ],
)


@router.get("/circuit-breakers", response_model=CircuitBreakerStatusResponse)
def circuit_breaker_status(
    breakers: Annotated[CircuitBreakerRegistry, Depends(get_circuit_breakers)],
) -> CircuitBreakerStatusResponse:
    """State, failure count and last failure of every known dependency."""

    return CircuitBreakerStatusResponse(
        breakers={
            name: CircuitBreakerStatus(**snapshot)
            for name, snapshot in breakers.get_status().items()
        }
    )


@router.post("/circuit-breakers/{name}/reset", response_model=CircuitBreakerStatus)
def reset_circuit_breaker(
    name: str,
    breakers: Annotated[CircuitBreakerRegistry, Depends(get_circuit_breakers)],
) -> CircuitBreakerStatus:
    """Force a breaker back to CLOSED with zeroed counters."""

    if not breakers.reset(name):
        raise NotFoundAppError(
            code="circuit_breaker_not_found",
            message=f"No circuit breaker registered for '{name}'",
            details={"dependency": name},
        )
    return CircuitBreakerStatus(**breakers.get_status()[name])


@router.get("/rate-limit", response_model=RateLimitInfoResponse)
async def rate_limit_info(
    request: Request,
    limiter: Annotated[AbstractRateLimiter, Depends(get_rate_limiter)],
) -> RateLimitInfoResponse:
    """Caller's standing under the default policy, without consuming budget.

    The guard on this router has already recorded the current request.
    """

    result = await limiter.get_rate_limit_info(get_client_key(request), default_policy())
    return RateLimitInfoResponse(
        allowed=result.allowed,
        limit=result.limit,
        remaining=result.remaining,
        reset_time=result.reset_at,
    )


@router.delete("/rate-limit", status_code=status.HTTP_204_NO_CONTENT)
async def reset_own_rate_limit(
    request: Request,
    limiter: Annotated[AbstractRateLimiter, Depends(get_rate_limiter)],
) -> None:
    """Drop every recorded attempt of the caller under the default prefix."""

    await limiter.reset_rate_limit(get_client_key(request), default_policy())
