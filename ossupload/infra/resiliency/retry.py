"""Structured retry combinator that cooperates with a circuit breaker."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from ossupload.common.errors import RemoteCallError, TransientRemoteError
from ossupload.infra.observability.metrics import RETRIES
from ossupload.infra.resiliency.circuit_breaker import CircuitBreaker
from ossupload.infra.resiliency.policy import ResiliencyPolicy

T = TypeVar("T")
logger = logging.getLogger(__name__)


def is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, TransientRemoteError)


def execute_with_retry(
    operation: Callable[[], T],
    *,
    policy: ResiliencyPolicy,
    breaker: CircuitBreaker,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Run ``operation`` under ``breaker``, retrying transient failures.

    Each attempt must be admitted by the breaker, so an open circuit raises
    ``CircuitOpenError`` before the remote is touched. A transient failure is
    retried up to ``policy.retry_count`` times, waiting
    ``policy.backoff_for(attempt)`` between attempts; retrying stops early once
    the breaker has tripped and the last transient error propagates.

    Errors for which ``is_transient`` is false propagate immediately. Remote
    errors of that kind still prove the dependency is answering and count as a
    success for the breaker; any other exception only frees the probe slot.
    """
    attempt = 0
    while True:
        breaker.before_call()
        try:
            result = operation()
        except Exception as exc:
            if not is_transient(exc):
                if isinstance(exc, RemoteCallError):
                    breaker.record_success()
                else:
                    breaker.release()
                raise
            breaker.record_failure()
            attempt += 1
            if attempt > policy.retry_count or breaker.is_open:
                raise
            delay = policy.backoff_for(attempt)
            RETRIES.labels(endpoint=breaker.name).inc()
            if on_retry:
                on_retry(attempt, exc, delay)
            else:
                logger.warning(
                    "retry endpoint=%s attempt=%d delay=%.2fs error=%r",
                    breaker.name,
                    attempt,
                    delay,
                    exc,
                )
            sleep(delay)
        except BaseException:
            breaker.release()
            raise
        else:
            breaker.record_success()
            return result
