"""Shared Redis client construction."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from tasktracker.core.config import RedisSettings, settings

logger = logging.getLogger(__name__)


def create_redis_client(redis_settings: RedisSettings | None = None) -> Redis:
    """Build the async Redis client used by the rate limiter and readiness probe.

    Connections are opened lazily on first command, so building the client
    never fails because the store is down.

    Args:
        redis_settings: Overrides the global Redis settings.

    Returns:
        Redis: Client with bounded socket timeouts.
    """

    cfg = redis_settings or settings.redis
    client = Redis.from_url(
        cfg.url,
        socket_timeout=cfg.socket_timeout_seconds,
        socket_connect_timeout=cfg.socket_connect_timeout_seconds,
        decode_responses=True,
    )
    logger.info(
        "redis.client_created",
        extra={
            "socket_timeout_s": cfg.socket_timeout_seconds,
            "connect_timeout_s": cfg.socket_connect_timeout_seconds,
        },
    )
    return client
