"""Thread-safe circuit breakers keyed by remote endpoint class.

A breaker is shared by every transfer that talks to the same endpoint class,
so all state transitions happen under the breaker's lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable

from ossupload.common.config import get_settings
from ossupload.common.errors import CircuitOpenError
from ossupload.infra.observability.metrics import CIRCUIT_STATE
from ossupload.infra.resiliency.policy import EndpointClass, ResiliencyPolicy

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass(frozen=True, slots=True)
class CircuitSnapshot:
    state: CircuitState
    failure_count: int
    opened_at: float | None


class CircuitBreaker:
    """Closed/Open/HalfOpen breaker for one endpoint class.

    Args:
        name: Endpoint class the breaker guards.
        failure_threshold: Consecutive failures that trip the breaker.
        reset_interval: Seconds the breaker stays open before a probe.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int,
        reset_interval: float,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_interval = reset_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False
        CIRCUIT_STATE.labels(endpoint=name).set(_STATE_GAUGE_VALUE[self._state])

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(self._state, self._failures, self._opened_at)

    def before_call(self) -> None:
        """Admit a call or raise ``CircuitOpenError`` without touching the remote."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed < self.reset_interval:
                    raise CircuitOpenError(self.name, self.reset_interval - elapsed)
                self._transition(CircuitState.HALF_OPEN)
                self._probe_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.name, 0.0)
                self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._probe_in_flight = False
            if self._state is not CircuitState.CLOSED:
                self._opened_at = None
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            if self._state is CircuitState.OPEN:
                # Late failure of a call admitted before the trip.
                return
            self._failures += 1
            if (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            ):
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN)
                logger.warning(
                    "circuit_open endpoint=%s failures=%d reset_interval=%.1f",
                    self.name,
                    self._failures,
                    self.reset_interval,
                )

    def release(self) -> None:
        """Free a half-open probe slot without judging the dependency."""
        with self._lock:
            self._probe_in_flight = False

    def _transition(self, state: CircuitState) -> None:
        if state is not self._state:
            logger.info(
                "circuit_transition endpoint=%s from=%s to=%s",
                self.name,
                self._state.value,
                state.value,
            )
        self._state = state
        CIRCUIT_STATE.labels(endpoint=self.name).set(_STATE_GAUGE_VALUE[state])


class CircuitBreakerRegistry:
    """Owns one breaker per endpoint class, created on first use."""

    def __init__(
        self,
        policy: ResiliencyPolicy | None = None,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self.policy = policy or ResiliencyPolicy.create_default()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, endpoint: EndpointClass | str) -> CircuitBreaker:
        name = endpoint.value if isinstance(endpoint, EndpointClass) else endpoint
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.policy.retry_count,
                    reset_interval=self.policy.circuit_breaker_interval,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker


@lru_cache(maxsize=None)
def registry_for_policy(policy: ResiliencyPolicy) -> CircuitBreakerRegistry:
    """Process-wide registry shared by every caller that uses ``policy``."""
    return CircuitBreakerRegistry(policy)


def get_default_registry() -> CircuitBreakerRegistry:
    """Registry for the policy configured in the environment."""
    return registry_for_policy(ResiliencyPolicy.from_settings(get_settings()))
