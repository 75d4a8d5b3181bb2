from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ossupload.common.errors import InvalidConfigurationError

if TYPE_CHECKING:
    from ossupload.common.config import Settings


class EndpointClass(str, Enum):
    """Remote endpoint classes; each gets its own circuit breaker."""

    SIGNED_URLS = "signed-urls"
    PART_UPLOAD = "part-upload"
    COMPLETE_UPLOAD = "complete-upload"


@dataclass(frozen=True, slots=True)
class ResiliencyPolicy:
    """Retry and circuit-breaker settings, intervals in seconds."""

    retry_count: int = 3
    backoff_interval: float = 10.0
    circuit_breaker_interval: float = 5.0

    def __post_init__(self) -> None:
        if self.retry_count < 1:
            raise InvalidConfigurationError("retry_count must be at least 1")
        if self.backoff_interval < 0:
            raise InvalidConfigurationError("backoff_interval cannot be negative")
        if self.circuit_breaker_interval < 0:
            raise InvalidConfigurationError(
                "circuit_breaker_interval cannot be negative"
            )

    @classmethod
    def create_default(cls) -> "ResiliencyPolicy":
        return cls()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ResiliencyPolicy":
        return cls(
            retry_count=int(settings.RESILIENCY_RETRY_COUNT),
            backoff_interval=float(settings.RESILIENCY_BACKOFF_INTERVAL),
            circuit_breaker_interval=float(
                settings.RESILIENCY_CIRCUIT_BREAKER_INTERVAL
            ),
        )

    def backoff_for(self, attempt: int) -> float:
        """Linear backoff: the n-th retry waits ``backoff_interval * n``."""
        return self.backoff_interval * attempt

    def __str__(self) -> str:
        return (
            f"RetryCount:{self.retry_count}, BackoffInterval:{self.backoff_interval}, "
            f"CircuitBreakerInterval:{self.circuit_breaker_interval}"
        )
