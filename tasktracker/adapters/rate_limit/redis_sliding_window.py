"""Redis-backed sliding-window log rate limiter.

Each identifier owns a sorted set whose members are individual attempts
scored by their timestamp in milliseconds. A check runs four commands in a
single MULTI/EXEC transaction so concurrent callers (in this process or any
other) can never interleave between the prune and the count:

    ZREMRANGEBYSCORE key -inf (window_start
    ZCARD key
    ZADD key now "{now}-{token}"
    EXPIRE key ceil(window_ms / 1000)

Store failures fail open: an unreachable or misbehaving Redis must not turn
into an outage of every rate-limited route.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from tasktracker.adapters.rate_limit.base import (
    DEFAULT_KEY_PREFIX,
    AbstractRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    evaluate_window,
    fail_open_result,
)

logger = logging.getLogger(__name__)

# Network-level failures surface as OSError subclasses (incl. TimeoutError)
STORE_ERRORS: tuple[type[BaseException], ...] = (RedisError, OSError)

_SCAN_BATCH = 500


class RedisSlidingWindowRateLimiter(AbstractRateLimiter):
    """Distributed rate limiter over a shared Redis instance."""

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        default_window_ms: int = 60_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            redis: Async Redis client; its lifecycle is owned by the caller.
            key_prefix: Prefix scanned by ``cleanup_expired_keys`` and used by
                ``reset_rate_limit`` when no policy is given.
            default_window_ms: Window used to derive the TTL given to keys that
                lost theirs.
            clock: Time source function returning UNIX time in seconds.
        """
        self._redis = redis
        self.default_key_prefix = key_prefix
        self._default_ttl_seconds = math.ceil(default_window_ms / 1000)
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check_rate_limit(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        key = policy.key_for(identifier)
        now_ms = self._now_ms()
        window_start_ms = now_ms - policy.window_ms

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", f"({window_start_ms}")
                pipe.zcard(key)
                pipe.zadd(key, {f"{now_ms}-{uuid.uuid4().hex}": now_ms})
                pipe.expire(key, policy.ttl_seconds)
                results = await pipe.execute()
        except STORE_ERRORS as exc:
            logger.warning(
                "rate_limit.fail_open",
                extra={
                    "operation": "check",
                    "key_prefix": policy.key_prefix,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return fail_open_result(policy, now_ms)

        if not results or len(results) < 4:
            logger.error(
                "rate_limit.fail_open",
                extra={
                    "operation": "check",
                    "key_prefix": policy.key_prefix,
                    "reason": "incomplete_pipeline_result",
                },
            )
            return fail_open_result(policy, now_ms)

        current_count = int(results[1])
        result = evaluate_window(policy=policy, current_count=current_count, now_ms=now_ms)
        logger.debug(
            "rate_limit.checked",
            extra={
                "key_prefix": policy.key_prefix,
                "allowed": result.allowed,
                "count": current_count,
                "limit": policy.limit,
            },
        )
        return result

    async def get_rate_limit_info(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        key = policy.key_for(identifier)
        now_ms = self._now_ms()
        window_start_ms = now_ms - policy.window_ms

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", f"({window_start_ms}")
                pipe.zcard(key)
                results = await pipe.execute()
        except STORE_ERRORS as exc:
            logger.warning(
                "rate_limit.fail_open",
                extra={
                    "operation": "info",
                    "key_prefix": policy.key_prefix,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return fail_open_result(policy, now_ms)

        if not results or len(results) < 2:
            return fail_open_result(policy, now_ms)

        count = int(results[1])
        return RateLimitResult(
            allowed=count < policy.limit,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            reset_time_ms=now_ms + policy.window_ms,
        )

    async def reset_rate_limit(self, identifier: str, policy: RateLimitPolicy | None = None) -> None:
        key = self._key(identifier, policy)
        try:
            await self._redis.delete(key)
        except STORE_ERRORS as exc:
            logger.error(
                "rate_limit.reset_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return

        logger.debug(
            "rate_limit.reset",
            extra={"key_prefix": policy.key_prefix if policy else self.default_key_prefix},
        )

    async def cleanup_expired_keys(self) -> int:
        """Give a TTL to any window key under the default prefix that has none.

        Redis expiry already reclaims idle windows; this only repairs keys
        whose TTL was lost (e.g. restored from a snapshot or written by an
        older client). Best effort: failures are logged, never raised.

        Returns:
            Number of keys that received a TTL.
        """
        touched = 0
        try:
            batch: list[str | bytes] = []
            async for key in self._redis.scan_iter(match=f"{self.default_key_prefix}*", count=_SCAN_BATCH):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    touched += await self._expire_persistent(batch)
                    batch = []
            if batch:
                touched += await self._expire_persistent(batch)
        except STORE_ERRORS as exc:
            logger.error(
                "rate_limit.cleanup_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "keys_touched": touched,
                },
            )
            return touched

        if touched:
            logger.info("rate_limit.cleanup", extra={"keys_touched": touched})
        return touched

    async def _expire_persistent(self, keys: list[str | bytes]) -> int:
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.ttl(key)
            ttls = await pipe.execute()

        # TTL -1: key exists without expiry; -2: already gone
        persistent = [key for key, ttl in zip(keys, ttls) if ttl == -1]
        if not persistent:
            return 0

        async with self._redis.pipeline(transaction=False) as pipe:
            for key in persistent:
                pipe.expire(key, self._default_ttl_seconds)
            await pipe.execute()
        return len(persistent)

    async def close(self) -> None:
        await self._redis.aclose()
