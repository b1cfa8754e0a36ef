"""In-memory sliding-window log rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Deployments use the Redis backend; this one serves local runs and tests.
- Thread-safe: uses a lock around shared state. No ``await`` happens while
  the lock is held, so each check is also atomic with respect to the event
  loop.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from tasktracker.adapters.rate_limit.base import (
    DEFAULT_KEY_PREFIX,
    AbstractRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    evaluate_window,
)


@dataclass
class _WindowLog:
    # (timestamp_ms, token) in insertion order
    entries: deque[tuple[int, str]] = field(default_factory=deque)
    expires_at_ms: int | None = None

    def prune(self, window_start_ms: int) -> None:
        while self.entries and self.entries[0][0] < window_start_ms:
            self.entries.popleft()


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter keeping a timestamped log per key in process memory.

    Mirrors the Redis backend step for step: prune entries older than the
    window, count, append the attempt, refresh the key expiry.
    """

    def __init__(
        self,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            key_prefix: Prefix used by ``reset_rate_limit`` when no policy is given.
            clock: Time source function returning UNIX time in seconds.
        """
        self.default_key_prefix = key_prefix
        self._clock = clock
        self._lock = threading.RLock()
        self._logs: dict[str, _WindowLog] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _live_log(self, key: str, now_ms: int) -> _WindowLog | None:
        log = self._logs.get(key)
        if log is not None and log.expires_at_ms is not None and log.expires_at_ms <= now_ms:
            del self._logs[key]
            return None
        return log

    async def check_rate_limit(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        key = policy.key_for(identifier)
        now_ms = self._now_ms()

        with self._lock:
            log = self._live_log(key, now_ms)
            if log is None:
                log = self._logs[key] = _WindowLog()
            log.prune(now_ms - policy.window_ms)
            current_count = len(log.entries)
            log.entries.append((now_ms, uuid.uuid4().hex))
            log.expires_at_ms = now_ms + policy.ttl_seconds * 1000

        return evaluate_window(policy=policy, current_count=current_count, now_ms=now_ms)

    async def get_rate_limit_info(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        key = policy.key_for(identifier)
        now_ms = self._now_ms()

        with self._lock:
            log = self._live_log(key, now_ms)
            if log is None:
                count = 0
            else:
                log.prune(now_ms - policy.window_ms)
                count = len(log.entries)

        return RateLimitResult(
            allowed=count < policy.limit,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            reset_time_ms=now_ms + policy.window_ms,
        )

    async def reset_rate_limit(self, identifier: str, policy: RateLimitPolicy | None = None) -> None:
        key = self._key(identifier, policy)
        with self._lock:
            self._logs.pop(key, None)

    async def cleanup_expired_keys(self) -> int:
        now_ms = self._now_ms()
        with self._lock:
            expired = [
                key
                for key, log in self._logs.items()
                if log.expires_at_ms is not None and log.expires_at_ms <= now_ms
            ]
            for key in expired:
                del self._logs[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._logs)
