"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import of the settings module so
the app runs on the in-memory backend with known API keys and no
background housekeeping.
"""

from __future__ import annotations

import os
from typing import Any, AsyncIterator

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402


def _parse_bound(value: Any) -> tuple[float, bool]:
    """Parse a ZRANGEBYSCORE bound into (score, exclusive)."""
    text = str(value)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    return float(text), exclusive


class FakePipeline:
    """Queues commands and applies them to a FakeRedis on execute()."""

    def __init__(self, redis: "FakeRedis", transaction: bool) -> None:
        self._redis = redis
        self.transaction = transaction
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        self._commands.clear()
        return False

    def _queue(self, name: str, *args: Any) -> "FakePipeline":
        self._commands.append((name, args))
        return self

    def zremrangebyscore(self, key: str, min_score: Any, max_score: Any) -> "FakePipeline":
        return self._queue("zremrangebyscore", key, min_score, max_score)

    def zcard(self, key: str) -> "FakePipeline":
        return self._queue("zcard", key)

    def zadd(self, key: str, mapping: dict[str, float]) -> "FakePipeline":
        return self._queue("zadd", key, mapping)

    def expire(self, key: str, seconds: int) -> "FakePipeline":
        return self._queue("expire", key, seconds)

    def ttl(self, key: str) -> "FakePipeline":
        return self._queue("ttl", key)

    async def execute(self) -> list[Any]:
        self._redis.executed_pipelines.append(
            {"transaction": self.transaction, "commands": [name for name, _ in self._commands]}
        )
        if self._redis.error is not None:
            raise self._redis.error
        results = [getattr(self._redis, f"_{name}")(*args) for name, args in self._commands]
        self._commands.clear()
        if self._redis.truncate_results is not None:
            return results[: self._redis.truncate_results]
        return results


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` covering the sorted-set,
    expiry and pipeline commands the rate limiter issues.

    Set ``error`` to make every command raise it; set ``truncate_results`` to
    make pipelines return fewer results than commands queued.
    """

    def __init__(self) -> None:
        self.zsets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}
        self.error: BaseException | None = None
        self.truncate_results: int | None = None
        self.executed_pipelines: list[dict[str, Any]] = []
        self.closed = False
        self.ping_calls = 0

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    # Command implementations shared by pipelines and direct calls

    def _zremrangebyscore(self, key: str, min_score: Any, max_score: Any) -> int:
        lo, lo_excl = _parse_bound(min_score)
        hi, hi_excl = _parse_bound(max_score)
        zset = self.zsets.get(key, {})
        doomed = [
            member
            for member, score in zset.items()
            if (score > lo if lo_excl else score >= lo) and (score < hi if hi_excl else score <= hi)
        ]
        for member in doomed:
            del zset[member]
        return len(doomed)

    def _zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    def _zadd(self, key: str, mapping: dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    def _expire(self, key: str, seconds: int) -> bool:
        if key not in self.zsets:
            return False
        self.ttls[key] = seconds
        return True

    def _ttl(self, key: str) -> int:
        if key not in self.zsets:
            return -2
        return self.ttls.get(key, -1)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.zsets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match: str | None = None, count: int | None = None) -> AsyncIterator[str]:
        self._check()
        prefix = (match or "*").rstrip("*")
        for key in list(self.zsets):
            if key.startswith(prefix):
                yield key

    async def ping(self) -> bool:
        self.ping_calls += 1
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_down() -> FakeRedis:
    redis = FakeRedis()
    redis.error = RedisConnectionError("Connection refused")
    return redis
