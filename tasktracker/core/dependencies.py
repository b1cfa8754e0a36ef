"""FastAPI dependencies exposing objects built by the application lifespan."""

from __future__ import annotations

from fastapi import Request
from redis.asyncio import Redis

from tasktracker.services.circuit_breaker import CircuitBreakerRegistry


def get_circuit_breakers(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.circuit_breakers


def get_redis(request: Request) -> Redis | None:
    """Shared Redis client, or None when running on the memory backend."""
    return getattr(request.app.state, "redis", None)
