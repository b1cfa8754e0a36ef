"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the resilience components) so tests can build an app around their own
limiter, breaker registry or store client.

The resilience components are created here, once per application, and
handed to request handlers through ``app.state``:

- ``app.state.redis``: shared store client (None on the memory backend)
- ``app.state.rate_limiter``: sliding-window limiter used by the guard
- ``app.state.circuit_breakers``: registry of per-dependency breakers
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from redis.asyncio import Redis

from tasktracker.adapters.rate_limit import AbstractRateLimiter, create_rate_limiter
from tasktracker.api.routes import health_router, resilience_router
from tasktracker.core.config import settings
from tasktracker.core.exception_handlers import setup_exception_handlers
from tasktracker.core.logging import configure_logging
from tasktracker.core.middleware import request_id_middleware
from tasktracker.core.openapi import apply_openapi_customizations
from tasktracker.core.redis_client import create_redis_client
from tasktracker.services.circuit_breaker import CircuitBreakerOptions, CircuitBreakerRegistry
from tasktracker.services.housekeeping import run_rate_limit_cleanup

logger = logging.getLogger(__name__)


def build_circuit_breaker_registry() -> CircuitBreakerRegistry:
    cfg = settings.circuit_breaker
    return CircuitBreakerRegistry(
        CircuitBreakerOptions(
            failure_threshold=cfg.failure_threshold,
            recovery_timeout_ms=cfg.recovery_timeout_ms,
            expected_response_time_ms=cfg.expected_response_time_ms,
            monitoring_window_ms=cfg.monitoring_window_ms,
        )
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run housekeeping while the app serves; release the store on shutdown."""

    stop_event = asyncio.Event()
    cleanup_task: asyncio.Task | None = None

    interval = settings.rate_limit.cleanup_interval_seconds
    if settings.rate_limit.enabled and interval > 0:
        cleanup_task = asyncio.create_task(
            run_rate_limit_cleanup(app.state.rate_limiter, interval, stop_event)
        )

    try:
        yield
    finally:
        stop_event.set()
        if cleanup_task is not None:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task

        redis: Redis | None = app.state.redis
        if redis is not None:
            await redis.aclose()
        logger.info("app.shutdown")


def create_app(
    *,
    rate_limiter: AbstractRateLimiter | None = None,
    circuit_breakers: CircuitBreakerRegistry | None = None,
    redis: Redis | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Use this limiter instead of the configured backend.
        circuit_breakers: Use this registry instead of a fresh one.
        redis: Use this store client instead of one built from settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Task Tracker API",
        description=(
            "Task tracking API resilience layer: sliding-window rate limiting "
            "backed by a shared Redis store, per-dependency circuit breakers, "
            "operator endpoints and health probes."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    if redis is None and rate_limiter is None and settings.rate_limit.backend.lower() == "redis":
        redis = create_redis_client(settings.redis)

    app.state.redis = redis
    app.state.rate_limiter = rate_limiter or create_rate_limiter(redis, settings.rate_limit)
    app.state.circuit_breakers = circuit_breakers or build_circuit_breaker_registry()

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(resilience_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "app_env": settings.app_env,
            "rate_limit_backend": type(app.state.rate_limiter).__name__,
            "rate_limit_enabled": settings.rate_limit.enabled,
        },
    )
    return app
