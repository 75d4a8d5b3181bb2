from __future__ import annotations

import pytest

from ossupload.common.config import get_settings
from ossupload.infra.resiliency import (
    CircuitBreakerRegistry,
    ResiliencyPolicy,
    registry_for_policy,
)
from tests.services.mock_remote import FakeClock, RecordingSleep


@pytest.fixture(autouse=True)
def _reset_cached_singletons():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    registry_for_policy.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]
    registry_for_policy.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def sleeper():
    return RecordingSleep()


@pytest.fixture()
def policy():
    return ResiliencyPolicy.create_default()


@pytest.fixture()
def registry(policy, clock):
    return CircuitBreakerRegistry(policy, clock=clock)
