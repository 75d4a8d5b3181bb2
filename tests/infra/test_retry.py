"""Tests for the retry combinator."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ossupload.common.errors import (
    CircuitOpenError,
    NonRetryableRemoteError,
    TransferCancelledError,
    TransientRemoteError,
)
from ossupload.infra.resiliency import (
    CircuitBreaker,
    CircuitState,
    EndpointClass,
    ResiliencyPolicy,
    execute_with_retry,
)


def _timeout() -> TransientRemoteError:
    return TransientRemoteError("signed-urls request failed: ReadTimeout", endpoint="signed-urls")


class TestExecuteWithRetry:
    def test_returns_result_without_retrying(self, registry, policy, sleeper):
        operation = MagicMock(return_value="ok")

        result = execute_with_retry(
            operation,
            policy=policy,
            breaker=registry.get(EndpointClass.SIGNED_URLS),
            sleep=sleeper,
        )

        assert result == "ok"
        operation.assert_called_once_with()
        assert sleeper.delays == []

    def test_transient_failures_back_off_linearly(self, clock, sleeper):
        policy = ResiliencyPolicy(retry_count=3, backoff_interval=10.0, circuit_breaker_interval=5.0)
        # A higher threshold keeps the circuit closed across all retries.
        breaker = CircuitBreaker("part-upload", failure_threshold=10, reset_interval=5.0, clock=clock)
        operation = MagicMock(side_effect=[_timeout(), _timeout(), _timeout(), "etag"])

        result = execute_with_retry(operation, policy=policy, breaker=breaker, sleep=sleeper)

        assert result == "etag"
        assert operation.call_count == 4
        assert sleeper.delays == [10.0, 20.0, 30.0]
        assert breaker.snapshot().failure_count == 0

    def test_gives_up_after_retry_count(self, clock, sleeper):
        policy = ResiliencyPolicy(retry_count=2, backoff_interval=1.0, circuit_breaker_interval=5.0)
        breaker = CircuitBreaker("part-upload", failure_threshold=10, reset_interval=5.0, clock=clock)
        operation = MagicMock(side_effect=_timeout())

        with pytest.raises(TransientRemoteError):
            execute_with_retry(operation, policy=policy, breaker=breaker, sleep=sleeper)

        assert operation.call_count == 3
        assert sleeper.delays == [1.0, 2.0]

    def test_non_transient_error_propagates_immediately(self, registry, policy, sleeper):
        breaker = registry.get(EndpointClass.SIGNED_URLS)
        breaker.record_failure()
        operation = MagicMock(
            side_effect=NonRetryableRemoteError("HTTP 400", endpoint="signed-urls", status_code=400)
        )

        with pytest.raises(NonRetryableRemoteError):
            execute_with_retry(operation, policy=policy, breaker=breaker, sleep=sleeper)

        operation.assert_called_once_with()
        assert sleeper.delays == []
        # The remote answered, so the failure streak is reset.
        assert breaker.snapshot().failure_count == 0

    def test_local_errors_leave_breaker_untouched(self, registry, policy, sleeper):
        breaker = registry.get(EndpointClass.PART_UPLOAD)
        breaker.record_failure()
        operation = MagicMock(side_effect=TransferCancelledError("Transfer was cancelled"))

        with pytest.raises(TransferCancelledError):
            execute_with_retry(operation, policy=policy, breaker=breaker, sleep=sleeper)

        assert breaker.snapshot().failure_count == 1

    def test_on_retry_callback_receives_attempt_and_delay(self, clock, sleeper):
        policy = ResiliencyPolicy(retry_count=3, backoff_interval=0.5, circuit_breaker_interval=5.0)
        breaker = CircuitBreaker("part-upload", failure_threshold=10, reset_interval=5.0, clock=clock)
        error = _timeout()
        operation = MagicMock(side_effect=[error, "ok"])
        on_retry = MagicMock()

        execute_with_retry(
            operation, policy=policy, breaker=breaker, sleep=sleeper, on_retry=on_retry
        )

        on_retry.assert_called_once_with(1, error, 0.5)


class TestRetryWithCircuitBreaker:
    def test_three_timeouts_open_circuit_then_probe_after_interval(
        self, registry, policy, clock, sleeper
    ):
        breaker = registry.get(EndpointClass.SIGNED_URLS)
        stub = MagicMock(side_effect=_timeout())

        with pytest.raises(TransientRemoteError):
            execute_with_retry(stub, policy=policy, breaker=breaker, sleep=sleeper)

        assert stub.call_count == 3
        assert sleeper.delays == [10.0, 20.0]
        assert breaker.state is CircuitState.OPEN

        clock.advance(3.0)
        with pytest.raises(CircuitOpenError):
            execute_with_retry(stub, policy=policy, breaker=breaker, sleep=sleeper)
        assert stub.call_count == 3

        clock.advance(3.0)
        stub.side_effect = None
        stub.return_value = "urls"
        assert execute_with_retry(stub, policy=policy, breaker=breaker, sleep=sleeper) == "urls"
        assert stub.call_count == 4
        assert breaker.state is CircuitState.CLOSED

    def test_failed_probe_reopens_without_retrying(self, registry, policy, clock, sleeper):
        breaker = registry.get(EndpointClass.COMPLETE_UPLOAD)
        stub = MagicMock(side_effect=_timeout())
        with pytest.raises(TransientRemoteError):
            execute_with_retry(stub, policy=policy, breaker=breaker, sleep=sleeper)
        clock.advance(6.0)

        with pytest.raises(TransientRemoteError):
            execute_with_retry(stub, policy=policy, breaker=breaker, sleep=sleeper)

        assert stub.call_count == 4
        assert breaker.state is CircuitState.OPEN
        assert breaker.snapshot().opened_at == clock()

    def test_open_circuit_rejects_without_calling_operation(self, registry, policy, sleeper):
        breaker = registry.get(EndpointClass.PART_UPLOAD)
        for _ in range(policy.retry_count):
            breaker.record_failure()
        operation = MagicMock()

        with pytest.raises(CircuitOpenError):
            execute_with_retry(operation, policy=policy, breaker=breaker, sleep=sleeper)

        operation.assert_not_called()
