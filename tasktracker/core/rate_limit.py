"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Routes opt in by declaring a policy:

    @router.get(
        "/tasks",
        dependencies=[Depends(rate_limit(limit=30, window_ms=60_000))],
    )

A route without the dependency is never limited. The limiter itself is built
at startup and read from ``request.app.state.rate_limiter``.

Client identifiers are derived from ``{user_id|anonymous}:{ip}:{user_agent}``
and hashed before they reach the store so raw IPs are never used as keys.
The default hash is a 32-bit rolling string hash: cheap, but collisions are
plausible and it offers no real anonymity. Set
``RATE_LIMIT_IDENTIFIER_SECRET`` to switch to a keyed HMAC-SHA256.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Awaitable, Callable

from fastapi import Request, Response

from tasktracker.adapters.rate_limit.base import AbstractRateLimiter, RateLimitPolicy
from tasktracker.core.config import settings
from tasktracker.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def rolling_hash(text: str) -> str:
    """Non-cryptographic 32-bit string hash rendered in base 36.

    ``h = h * 31 + code_unit`` wrapped to a signed 32-bit integer, then the
    absolute value. Not collision resistant.
    """
    h = 0
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def hash_identifier(raw: str, secret: str | None = None) -> str:
    """Hash a raw client identifier into a store key.

    Args:
        raw: ``{user}:{ip}:{user_agent}`` string.
        secret: When given, use HMAC-SHA256 keyed with it instead of the
            rolling hash.

    Returns:
        Opaque identifier safe to use as a key suffix.
    """
    if secret:
        return hmac.new(secret.encode(), raw.encode(), hashlib.sha256).hexdigest()[:32]
    return rolling_hash(raw)


def build_client_identifier(request: Request) -> str:
    """Build the raw (unhashed) identifier for the current request."""

    user_id = getattr(request.state, "user_id", None) or "anonymous"
    client_ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("user-agent") or "unknown"
    return f"{user_id}:{client_ip}:{user_agent}"


def get_client_key(request: Request) -> str:
    """Hashed identifier for the current request."""

    return hash_identifier(
        build_client_identifier(request),
        settings.rate_limit.identifier_secret,
    )


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """FastAPI dependency returning the limiter built at startup."""

    return request.app.state.rate_limiter


def default_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        limit=settings.rate_limit.default_limit,
        window_ms=settings.rate_limit.default_window_ms,
        key_prefix=settings.rate_limit.key_prefix,
    )


async def enforce_rate_limit(
    request: Request,
    response: Response,
    policy: RateLimitPolicy | None,
) -> None:
    """Check the caller against ``policy`` and decorate the response.

    Args:
        request: FastAPI request.
        response: Response whose headers receive the X-RateLimit-* values.
        policy: Policy declared by the route; None means not limited.

    Raises:
        RateLimitExceededError: The caller exhausted its window (HTTP 429).
    """

    if policy is None or not settings.rate_limit.enabled:
        return

    limiter = get_rate_limiter(request)
    result = await limiter.check_rate_limit(get_client_key(request), policy)

    if result.allowed:
        response.headers.update(result.headers())
        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_prefix": policy.key_prefix,
                "limit": result.limit,
                "remaining": result.remaining,
                "window_ms": policy.window_ms,
            },
        )
        return

    retry_after = result.retry_after_seconds or 0
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_prefix": policy.key_prefix,
            "route": request.url.path,
            "limit": result.limit,
            "window_ms": policy.window_ms,
            "retry_after_s": retry_after,
        },
    )
    raise RateLimitExceededError(
        limit=result.limit,
        remaining=result.remaining,
        reset_time_ms=result.reset_time_ms,
        retry_after_seconds=retry_after,
    )


def rate_limit(
    *,
    limit: int,
    window_ms: int,
    key_prefix: str | None = None,
) -> Callable[[Request, Response], Awaitable[None]]:
    """Declare a rate limit policy for a route.

    Args:
        limit: Max requests per window.
        window_ms: Window length in milliseconds.
        key_prefix: Store namespace; defaults to ``RATE_LIMIT_KEY_PREFIX``.

    Returns:
        A dependency to pass to ``Depends``.
    """

    policy = RateLimitPolicy(
        limit=limit,
        window_ms=window_ms,
        key_prefix=key_prefix if key_prefix is not None else settings.rate_limit.key_prefix,
    )

    async def _dependency(request: Request, response: Response) -> None:
        await enforce_rate_limit(request, response, policy)

    _dependency.policy = policy  # type: ignore[attr-defined]
    return _dependency
