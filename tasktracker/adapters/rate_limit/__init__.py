"""Rate limiting adapters.

This package keeps the sliding-window algorithm behind a small abstraction so
the API layer works the same against Redis (shared across processes) or an
in-process log (local runs and tests).
"""

from tasktracker.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
)
from tasktracker.adapters.rate_limit.factory import create_rate_limiter

__all__ = [
    "AbstractRateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "create_rate_limiter",
]
