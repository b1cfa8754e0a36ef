"""Tests for the Redis sliding-window rate limiter (store mocked in conftest)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from tasktracker.adapters.rate_limit.base import RateLimitPolicy
from tasktracker.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowRateLimiter

POLICY = RateLimitPolicy(limit=3, window_ms=1000, key_prefix="rl:")


def _limiter(redis, now: float = 1000.0) -> tuple[RedisSlidingWindowRateLimiter, Mock]:
    clock = Mock(return_value=now)
    return RedisSlidingWindowRateLimiter(redis, key_prefix="rl:", clock=clock), clock


class TestCheckRateLimit:
    @pytest.mark.asyncio
    async def test_allows_three_then_blocks(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)

        results = [await limiter.check_rate_limit("client", POLICY) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results[:3]] == [2, 1, 0]
        assert results[3].remaining == 0
        assert results[3].retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_runs_single_transaction_per_check(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)

        await limiter.check_rate_limit("client", POLICY)

        assert fake_redis.executed_pipelines == [
            {
                "transaction": True,
                "commands": ["zremrangebyscore", "zcard", "zadd", "expire"],
            }
        ]

    @pytest.mark.asyncio
    async def test_records_attempt_under_prefixed_key_with_ttl(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        policy = RateLimitPolicy(limit=5, window_ms=1500, key_prefix="rl:")

        await limiter.check_rate_limit("client", policy)

        assert list(fake_redis.zsets) == ["rl:client"]
        (member, score), = fake_redis.zsets["rl:client"].items()
        assert score == 1_000_000
        assert member.startswith("1000000-")
        assert fake_redis.ttls["rl:client"] == 2

    @pytest.mark.asyncio
    async def test_rejected_attempt_is_kept(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)

        for _ in range(5):
            await limiter.check_rate_limit("client", POLICY)

        assert len(fake_redis.zsets["rl:client"]) == 5

    @pytest.mark.asyncio
    async def test_window_expiry_allows_again(self, fake_redis) -> None:
        limiter, clock = _limiter(fake_redis)

        for _ in range(4):
            await limiter.check_rate_limit("client", POLICY)

        clock.return_value = 1002.0
        result = await limiter.check_rate_limit("client", POLICY)

        assert result.allowed is True
        assert result.remaining == 2
        assert len(fake_redis.zsets["rl:client"]) == 1

    @pytest.mark.asyncio
    async def test_entry_exactly_at_window_start_still_counts(self, fake_redis) -> None:
        limiter, clock = _limiter(fake_redis)
        policy = RateLimitPolicy(limit=1, window_ms=1000, key_prefix="rl:")

        await limiter.check_rate_limit("client", policy)
        clock.return_value = 1001.0

        assert (await limiter.check_rate_limit("client", policy)).allowed is False

    @pytest.mark.asyncio
    async def test_identifiers_do_not_share_budget(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        policy = RateLimitPolicy(limit=1, window_ms=60_000, key_prefix="rl:")

        assert (await limiter.check_rate_limit("a", policy)).allowed is True
        assert (await limiter.check_rate_limit("a", policy)).allowed is False
        assert (await limiter.check_rate_limit("b", policy)).allowed is True


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_connection_error_allows(self, redis_down) -> None:
        limiter, _ = _limiter(redis_down)

        result = await limiter.check_rate_limit("client", POLICY)

        assert result.allowed is True
        assert result.remaining == POLICY.limit - 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [RedisTimeoutError("timed out"), ResponseError("EXECABORT"), OSError("network down")],
    )
    async def test_any_store_error_allows(self, fake_redis, error) -> None:
        fake_redis.error = error
        limiter, _ = _limiter(fake_redis)

        assert (await limiter.check_rate_limit("client", POLICY)).allowed is True

    @pytest.mark.asyncio
    async def test_incomplete_pipeline_result_allows(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        fake_redis.truncate_results = 2

        for _ in range(10):
            result = await limiter.check_rate_limit("client", POLICY)
            assert result.allowed is True

    @pytest.mark.asyncio
    async def test_info_fails_open(self, redis_down) -> None:
        limiter, _ = _limiter(redis_down)

        info = await limiter.get_rate_limit_info("client", POLICY)

        assert info.allowed is True
        assert info.remaining == POLICY.limit - 1

    @pytest.mark.asyncio
    async def test_reset_swallows_store_errors(self, redis_down) -> None:
        limiter, _ = _limiter(redis_down)

        await limiter.reset_rate_limit("client", POLICY)


class TestAuxiliaryOperations:
    @pytest.mark.asyncio
    async def test_info_prunes_and_counts_without_recording(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        await limiter.check_rate_limit("client", POLICY)

        info = await limiter.get_rate_limit_info("client", POLICY)

        assert info.allowed is True
        assert info.remaining == 2
        assert len(fake_redis.zsets["rl:client"]) == 1
        assert fake_redis.executed_pipelines[-1]["commands"] == ["zremrangebyscore", "zcard"]

    @pytest.mark.asyncio
    async def test_reset_deletes_key(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        for _ in range(4):
            await limiter.check_rate_limit("client", POLICY)

        await limiter.reset_rate_limit("client", POLICY)

        assert "rl:client" not in fake_redis.zsets
        assert (await limiter.check_rate_limit("client", POLICY)).allowed is True

    @pytest.mark.asyncio
    async def test_reset_without_policy_uses_default_prefix(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        await limiter.check_rate_limit("client", POLICY)

        await limiter.reset_rate_limit("client")

        assert fake_redis.zsets == {}

    @pytest.mark.asyncio
    async def test_cleanup_gives_ttl_to_persistent_keys(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)
        await limiter.check_rate_limit("fresh", POLICY)
        fake_redis.zsets["rl:stale"] = {"1-a": 1.0}
        fake_redis.zsets["other:key"] = {"1-b": 1.0}

        touched = await limiter.cleanup_expired_keys()

        assert touched == 1
        assert fake_redis.ttls["rl:stale"] == 60
        assert fake_redis.ttls["rl:fresh"] == 1
        assert "other:key" not in fake_redis.ttls

    @pytest.mark.asyncio
    async def test_cleanup_never_raises(self, redis_down) -> None:
        limiter, _ = _limiter(redis_down)

        assert await limiter.cleanup_expired_keys() == 0

    @pytest.mark.asyncio
    async def test_close_releases_client(self, fake_redis) -> None:
        limiter, _ = _limiter(fake_redis)

        await limiter.close()

        assert fake_redis.closed is True
