"""Factory for the configured rate limiter backend."""

from __future__ import annotations

from redis.asyncio import Redis

from tasktracker.adapters.rate_limit.base import AbstractRateLimiter
from tasktracker.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from tasktracker.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowRateLimiter
from tasktracker.core.config import RateLimitSettings, settings
from tasktracker.core.errors import ValidationAppError


def create_rate_limiter(
    redis: Redis | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
) -> AbstractRateLimiter:
    """Instantiate the rate limiter selected by ``RATE_LIMIT_BACKEND``.

    Args:
        redis: Shared async Redis client, required by the redis backend.
        rate_limit_settings: Overrides the global rate limit settings.

    Returns:
        AbstractRateLimiter: Configured limiter instance.

    Raises:
        ValidationAppError: If the backend is unknown or lacks its client.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.backend.lower()

    if backend == "redis":
        if redis is None:
            raise ValidationAppError(
                code="rate_limit_missing_redis",
                message="Redis rate limit backend requires a Redis client",
                details={"hint": "Set REDIS_URL or use RATE_LIMIT_BACKEND=memory"},
            )
        return RedisSlidingWindowRateLimiter(
            redis,
            key_prefix=cfg.key_prefix,
            default_window_ms=cfg.default_window_ms,
        )

    if backend == "memory":
        return InMemorySlidingWindowRateLimiter(key_prefix=cfg.key_prefix)

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory"
        ),
    )
