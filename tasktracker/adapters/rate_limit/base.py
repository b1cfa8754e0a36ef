"""Rate limiter interfaces.

The HTTP guard depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped (Redis in deployments, an in-process
log for local runs and tests) without touching the API layer.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

DEFAULT_KEY_PREFIX = "rate_limit:"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Budget applied to one protected route.

    Attributes:
        limit: Max requests per window.
        window_ms: Sliding window length in milliseconds.
        key_prefix: Namespace prepended to the identifier in the store.
    """

    limit: int
    window_ms: int
    key_prefix: str = DEFAULT_KEY_PREFIX

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")

    @property
    def ttl_seconds(self) -> int:
        """Expiry applied to the window key so idle identifiers self-expire."""
        return math.ceil(self.window_ms / 1000)

    def key_for(self, identifier: str) -> str:
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        return f"{self.key_prefix}{identifier}"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_time_ms: Epoch milliseconds when the window fully drains.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time_ms: int
    retry_after_seconds: int | None = None

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_time_ms / 1000, tz=timezone.utc)

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers describing this result."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


def evaluate_window(*, policy: RateLimitPolicy, current_count: int, now_ms: int) -> RateLimitResult:
    """Turn the pre-insert count of a window into an allow/deny decision.

    Shared by every backend so the accounting stays identical:
    the count excludes the attempt being evaluated, and a rejected attempt
    still occupies a slot in the window.

    Args:
        policy: Policy being enforced.
        current_count: Entries in the window before this attempt was recorded.
        now_ms: Time of the attempt in epoch milliseconds.

    Returns:
        RateLimitResult for the attempt.
    """

    reset_time_ms = now_ms + policy.window_ms
    if current_count >= policy.limit:
        return RateLimitResult(
            allowed=False,
            limit=policy.limit,
            remaining=0,
            reset_time_ms=reset_time_ms,
            retry_after_seconds=math.ceil((reset_time_ms - now_ms) / 1000),
        )
    return RateLimitResult(
        allowed=True,
        limit=policy.limit,
        remaining=policy.limit - current_count - 1,
        reset_time_ms=reset_time_ms,
    )


def fail_open_result(policy: RateLimitPolicy, now_ms: int) -> RateLimitResult:
    """Result returned when the store cannot answer: allow, best-effort remaining."""
    return RateLimitResult(
        allowed=True,
        limit=policy.limit,
        remaining=policy.limit - 1,
        reset_time_ms=now_ms + policy.window_ms,
    )


class AbstractRateLimiter(ABC):
    """Interface for sliding-window rate limiters."""

    default_key_prefix: str = DEFAULT_KEY_PREFIX

    @abstractmethod
    async def check_rate_limit(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Record an attempt for ``identifier`` and decide whether it is allowed.

        Args:
            identifier: Opaque client key (already hashed by the caller).
            policy: Budget to enforce.

        Returns:
            RateLimitResult describing the decision. Implementations backed by
            a remote store fail open instead of raising.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_rate_limit_info(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Report the window state for ``identifier`` without recording an attempt."""
        raise NotImplementedError

    @abstractmethod
    async def reset_rate_limit(self, identifier: str, policy: RateLimitPolicy | None = None) -> None:
        """Drop every recorded attempt for ``identifier``."""
        raise NotImplementedError

    @abstractmethod
    async def cleanup_expired_keys(self) -> int:
        """Advisory housekeeping. Returns the number of keys touched."""
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - default no-op
        """Release backend resources."""
        return None

    def _key(self, identifier: str, policy: RateLimitPolicy | None) -> str:
        if policy is not None:
            return policy.key_for(identifier)
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        return f"{self.default_key_prefix}{identifier}"
