"""Background housekeeping for the rate limit store."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from tasktracker.adapters.rate_limit.base import AbstractRateLimiter

logger = logging.getLogger(__name__)


async def run_rate_limit_cleanup(
    limiter: AbstractRateLimiter,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Call ``limiter.cleanup_expired_keys`` every ``interval_seconds`` until stopped.

    The store's own key expiry is what reclaims memory; this loop only
    repairs keys that lost their TTL, so a failing pass is logged and the
    loop keeps going.
    """

    logger.info("housekeeping.started", extra={"interval_s": interval_seconds})
    while not stop_event.is_set():
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        if stop_event.is_set():
            break

        try:
            await limiter.cleanup_expired_keys()
        except Exception as exc:
            logger.error(
                "housekeeping.cleanup_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
    logger.info("housekeeping.stopped")
