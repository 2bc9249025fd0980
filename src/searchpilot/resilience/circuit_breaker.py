"""
Circuit breaker: fail fast once a downstream surface is judged unhealthy.

Closed   -> Open      after ``failure_threshold`` consecutive failures
Open     -> HalfOpen  on the first call after ``reset_timeout`` has elapsed
HalfOpen -> Open      on any failure
HalfOpen -> Closed    after ``success_threshold`` consecutive successes

Transitions are reported to an optional ``on_state_change`` callback instead
of hidden listeners, so they can be asserted as plain state-machine steps.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

import structlog

from searchpilot.config import CircuitBreakerConfig
from searchpilot.errors import CircuitOpenError
from searchpilot.models import CircuitBreakerStats, CircuitState
from searchpilot.observability.metrics import metrics

logger = structlog.get_logger()
T = TypeVar("T")

StateChangeCallback = Callable[[CircuitState, CircuitState], None]


class CircuitBreaker:
    """Closed/Open/HalfOpen fault isolator around async operations."""

    def __init__(
        self,
        name: str = "default",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateChangeCallback] = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_calls = 0
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._last_failure_time: Optional[float] = None
        self._last_success_time: Optional[float] = None
        self._next_retry_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    async def execute(self, fn: Callable[[], Awaitable[T]], context: str = "") -> T:
        """Run ``fn`` if the circuit admits it; raise CircuitOpenError otherwise."""
        self._total_calls += 1

        if self._state is CircuitState.OPEN:
            if self._next_retry_time is not None and self._clock() >= self._next_retry_time:
                self._transition(CircuitState.HALF_OPEN)
            else:
                logger.warning("circuit_rejected", circuit=self.name, context=context or "unknown")
                raise CircuitOpenError(self.name, self._next_retry_time)

        if self._state is CircuitState.HALF_OPEN:
            if self._half_open_in_flight >= self.config.half_open_max_calls:
                logger.warning("circuit_half_open_saturated", circuit=self.name, context=context or "unknown")
                raise CircuitOpenError(self.name, self._next_retry_time)
            self._half_open_in_flight += 1
            try:
                return await self._call(fn, context)
            finally:
                self._half_open_in_flight -= 1

        return await self._call(fn, context)

    async def _call(self, fn: Callable[[], Awaitable[T]], context: str) -> T:
        try:
            result = await fn()
        except Exception as e:
            self._on_failure()
            logger.warning(
                "circuit_call_failed",
                circuit=self.name,
                context=context or "unknown",
                state=self._state.value,
                failures=self._failure_count,
                error=str(e)[:200],
            )
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        self._success_count += 1
        self._last_success_time = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)
        elif self._state is CircuitState.CLOSED:
            # Failures must be consecutive to trip the breaker
            self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._state is CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        self._half_open_successes = 0
        if new_state is CircuitState.OPEN:
            self._next_retry_time = self._clock() + self.config.reset_timeout
        else:
            self._next_retry_time = None
        if new_state is CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0

        logger.info(
            "circuit_state_changed",
            circuit=self.name,
            previous=previous.value,
            current=new_state.value,
            next_retry_in=self.config.reset_timeout if new_state is CircuitState.OPEN else None,
        )
        metrics.record_circuit_state(self.name, new_state.value)
        if self._on_state_change is not None:
            self._on_state_change(previous, new_state)

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            total_calls=self._total_calls,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            next_retry_time=self._next_retry_time,
        )

    def reset(self) -> None:
        """Force the breaker back to a fresh Closed state."""
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_calls = 0
        self._half_open_successes = 0
        self._last_failure_time = None
        self._last_success_time = None
        self._next_retry_time = None
        logger.info("circuit_reset", circuit=self.name)
        if previous is not CircuitState.CLOSED and self._on_state_change is not None:
            self._on_state_change(previous, CircuitState.CLOSED)
