"""Response models for health and resilience endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from tasktracker.services.circuit_breaker import CircuitBreakerState


class CircuitBreakerStatus(BaseModel):
    """Snapshot of one circuit breaker."""

    state: CircuitBreakerState = Field(..., description="CLOSED, OPEN or HALF_OPEN")
    failure_count: int = Field(..., ge=0)
    last_failure: datetime | None = Field(None, description="Time of the last recorded failure (UTC)")


class CircuitBreakerStatusResponse(BaseModel):
    breakers: dict[str, CircuitBreakerStatus] = Field(default_factory=dict)


class RateLimitInfoResponse(BaseModel):
    """Caller's current standing under the default policy."""

    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime = Field(..., description="When the current window fully drains (UTC)")


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"
    timestamp: datetime
    pid: int


class ReadinessResponse(BaseModel):
    status: Literal["ready", "not_ready"]
    timestamp: datetime
    checks: dict[str, str] = Field(
        default_factory=dict,
        description="Per-dependency result: ok, skipped, failed or circuit_open",
    )
