"""Retry, backoff and circuit-breaker policy applied to every remote call."""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitSnapshot,
    CircuitState,
    get_default_registry,
    registry_for_policy,
)
from .policy import EndpointClass, ResiliencyPolicy
from .retry import execute_with_retry, is_transient_error

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitSnapshot",
    "CircuitState",
    "EndpointClass",
    "ResiliencyPolicy",
    "execute_with_retry",
    "get_default_registry",
    "is_transient_error",
    "registry_for_policy",
]
