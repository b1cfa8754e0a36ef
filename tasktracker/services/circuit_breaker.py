"""Circuit breakers guarding calls to downstream dependencies.

One ``CircuitBreaker`` exists per dependency name. It moves through three
states:

- CLOSED: calls pass through. ``failure_threshold`` consecutive failures
  open the circuit.
- OPEN: calls fail fast with ``CircuitOpenError`` and the operation is not
  invoked. Once ``recovery_timeout_ms`` has elapsed since the last failure,
  the next call moves the circuit to HALF_OPEN and goes through as a probe.
- HALF_OPEN: calls pass through as probes. ``ceil(failure_threshold / 2)``
  consecutive successes close the circuit; a single failure re-opens it.

Breakers live in a ``CircuitBreakerRegistry`` built once at application
startup and handed to call sites (``app.state.circuit_breakers``).

Limitations:
- State is per process. Each worker decides on its own that a dependency
  is failing.
- No timeout is applied to the operation; a hung call hangs the caller.
  Wrap the operation in ``asyncio.wait_for`` for bounded latency.
- Failures are counted consecutively; ``monitoring_window_ms`` is kept in
  the options but no rolling window is applied.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from tasktracker.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerOptions:
    """Thresholds for one breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout_ms: Time after the last failure before probing.
        expected_response_time_ms: Slower successful calls are logged; the
            call itself is never cut short.
        monitoring_window_ms: Reserved for windowed failure accounting.
    """

    failure_threshold: int = 5
    recovery_timeout_ms: int = 30_000
    expected_response_time_ms: int = 5_000
    monitoring_window_ms: int = 60_000

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout_ms < 0:
            raise ValueError("recovery_timeout_ms must be >= 0")

    @property
    def success_threshold(self) -> int:
        """Consecutive probe successes needed to close from HALF_OPEN."""
        return math.ceil(self.failure_threshold / 2)


class CircuitBreaker:
    """State machine for a single named dependency."""

    def __init__(
        self,
        name: str,
        options: CircuitBreakerOptions | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.options = options or CircuitBreakerOptions()
        self._clock = clock

        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.consecutive_successes = 0
        self.last_failure_time: float | None = None
        self.last_state_change = clock()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` unless the circuit is open.

        Args:
            operation: Zero-argument callable returning an awaitable.

        Returns:
            Whatever the operation returns.

        Raises:
            CircuitOpenError: The circuit is open; the operation was not called.
            Exception: Any error raised by the operation, unchanged.
        """
        self._before_call()

        started = self._clock()
        try:
            result = await operation()
        except Exception as exc:
            self._on_failure(exc)
            raise

        self._on_success((self._clock() - started) * 1000)
        return result

    def _before_call(self) -> None:
        if self.state is not CircuitBreakerState.OPEN:
            return

        if self._recovery_elapsed():
            self._transition(CircuitBreakerState.HALF_OPEN)
            return

        raise CircuitOpenError(self.name, retry_after_seconds=self._retry_after_seconds())

    def _recovery_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return False
        elapsed_ms = (self._clock() - self.last_failure_time) * 1000
        return elapsed_ms >= self.options.recovery_timeout_ms

    def _retry_after_seconds(self) -> float | None:
        if self.last_failure_time is None:
            return None
        elapsed_ms = (self._clock() - self.last_failure_time) * 1000
        return max(0.0, (self.options.recovery_timeout_ms - elapsed_ms) / 1000)

    def _on_success(self, duration_ms: float) -> None:
        if duration_ms > self.options.expected_response_time_ms:
            logger.warning(
                "circuit_breaker.slow_call",
                extra={
                    "dependency": self.name,
                    "duration_ms": round(duration_ms, 2),
                    "expected_ms": self.options.expected_response_time_ms,
                },
            )

        if self.state is CircuitBreakerState.HALF_OPEN:
            self.consecutive_successes += 1
            if self.consecutive_successes >= self.options.success_threshold:
                self._transition(CircuitBreakerState.CLOSED)
            return

        # A call started while CLOSED may finish after the circuit opened
        if self.state is CircuitBreakerState.CLOSED:
            self.failure_count = 0

    def _on_failure(self, exc: Exception) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        logger.warning(
            "circuit_breaker.failure",
            extra={
                "dependency": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.options.failure_threshold,
                "error_type": type(exc).__name__,
            },
        )

        if self.state is CircuitBreakerState.HALF_OPEN:
            self.consecutive_successes = 0
            self._transition(CircuitBreakerState.OPEN)
        elif (
            self.state is CircuitBreakerState.CLOSED
            and self.failure_count >= self.options.failure_threshold
        ):
            self._transition(CircuitBreakerState.OPEN)

    def _transition(self, state: CircuitBreakerState) -> None:
        previous = self.state
        self.state = state
        self.last_state_change = self._clock()
        if state is CircuitBreakerState.CLOSED:
            self.failure_count = 0
            self.consecutive_successes = 0
        elif state is CircuitBreakerState.HALF_OPEN:
            self.consecutive_successes = 0

        log = logger.warning if state is CircuitBreakerState.OPEN else logger.info
        log(
            f"circuit_breaker.{state.value.lower()}",
            extra={
                "dependency": self.name,
                "from_state": previous.value,
                "to_state": state.value,
                "failure_count": self.failure_count,
            },
        )

    def reset(self) -> None:
        """Force CLOSED with zeroed counters (operator intervention)."""
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.consecutive_successes = 0
        self.last_failure_time = None
        self.last_state_change = self._clock()

    def status(self) -> dict[str, Any]:
        last_failure = None
        if self.last_failure_time is not None:
            last_failure = datetime.fromtimestamp(self.last_failure_time, tz=timezone.utc)
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "last_failure": last_failure,
        }


class CircuitBreakerRegistry:
    """Owns every breaker of the process, keyed by dependency name.

    Breakers are created on first use with the options passed to that first
    call. Options passed on later calls for the same name are ignored.
    """

    def __init__(
        self,
        defaults: CircuitBreakerOptions | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._defaults = defaults or CircuitBreakerOptions()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    async def execute(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        options: CircuitBreakerOptions | None = None,
    ) -> T:
        """Run ``operation`` through the breaker registered under ``name``."""
        breaker = self.get_or_create(name, options)
        return await breaker.execute(operation)

    def get_or_create(self, name: str, options: CircuitBreakerOptions | None = None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, options or self._defaults, clock=self._clock)
            self._breakers[name] = breaker
            logger.debug(
                "circuit_breaker.created",
                extra={
                    "dependency": name,
                    "failure_threshold": breaker.options.failure_threshold,
                    "recovery_timeout_ms": breaker.options.recovery_timeout_ms,
                },
            )
        elif options is not None and options != breaker.options:
            logger.debug(
                "circuit_breaker.options_ignored",
                extra={"dependency": name},
            )
        return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every known breaker: state, failure count, last failure."""
        return {name: breaker.status() for name, breaker in self._breakers.items()}

    def reset(self, name: str) -> bool:
        """Force the named breaker CLOSED. Returns False for unknown names."""
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        logger.info("circuit_breaker.manual_reset", extra={"dependency": name})
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
