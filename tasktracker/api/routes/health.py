from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from tasktracker.core.dependencies import get_circuit_breakers, get_redis
from tasktracker.core.errors import CircuitOpenError
from tasktracker.schemas.resilience import LivenessResponse, ReadinessResponse
from tasktracker.services.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

REDIS_DEPENDENCY = "redis"


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.
    """

    return {"status": "ok"}


@router.get("/health/live", response_model=LivenessResponse)
def liveness() -> LivenessResponse:
    """Liveness probe: the process is up and serving."""

    return LivenessResponse(timestamp=datetime.now(timezone.utc), pid=os.getpid())


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse, "description": "A dependency is unavailable"}},
)
async def readiness(
    breakers: Annotated[CircuitBreakerRegistry, Depends(get_circuit_breakers)],
    redis: Annotated[Redis | None, Depends(get_redis)],
) -> JSONResponse:
    """Readiness probe.

    Pings the shared store through its circuit breaker, so a store that keeps
    failing trips the breaker and later probes answer without waiting on it.
    With the memory rate limit backend there is no store to check.
    """

    checks: dict[str, str] = {}

    if redis is None:
        checks[REDIS_DEPENDENCY] = "skipped"
    else:
        try:
            await breakers.execute(REDIS_DEPENDENCY, redis.ping)
            checks[REDIS_DEPENDENCY] = "ok"
        except CircuitOpenError:
            checks[REDIS_DEPENDENCY] = "circuit_open"
        except Exception as exc:
            logger.warning(
                "readiness.check_failed",
                extra={"dependency": REDIS_DEPENDENCY, "error_type": type(exc).__name__},
            )
            checks[REDIS_DEPENDENCY] = "failed"

    ready = all(value in ("ok", "skipped") for value in checks.values())
    body = ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    return JSONResponse(
        status_code=200 if ready else 503,
        content=body.model_dump(mode="json"),
    )
