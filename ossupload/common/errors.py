"""Exception hierarchy shared by the upload pipeline.

Remote failures are classified when they are raised so the resiliency layer
can tell transient conditions from fatal ones without inspecting transport
details.
"""

from __future__ import annotations


class UploadError(RuntimeError):
    """Base class for every error raised by the upload pipeline."""


class InvalidConfigurationError(UploadError, ValueError):
    """Raised when transfer or policy settings are out of range."""


class StorageBackendNotConfiguredError(InvalidConfigurationError):
    """Raised when the signed-URL backend is not properly configured."""


class RemoteCallError(UploadError):
    """A classified failure of an outbound call."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message or f"{type(self).__name__} on {endpoint or 'remote'}")


class TransientRemoteError(RemoteCallError):
    """Timeouts, throttling and 5xx responses; retried per policy."""


class ExpiredUrlError(RemoteCallError):
    """A signed part URL was rejected (HTTP 403) and must be re-issued."""


class NonRetryableRemoteError(RemoteCallError):
    """Client-side failures that no amount of retrying will fix."""


class CircuitOpenError(UploadError):
    """Raised without a remote attempt while a circuit breaker is open."""

    def __init__(self, endpoint: str, retry_after: float) -> None:
        self.endpoint = endpoint
        self.retry_after = max(0.0, retry_after)
        super().__init__(
            f"Circuit for {endpoint} is open; retry in {self.retry_after:.1f}s"
        )


class IncompleteTransferError(UploadError):
    """Raised when completion is attempted with parts outstanding."""


class ProtocolInvariantError(UploadError):
    """Internal consistency violation. Always fatal and never retried."""


class TransferCancelledError(UploadError):
    """Raised when a transfer observes its cancellation signal."""


class SourceReadError(UploadError):
    """Raised when the source stream yields fewer bytes than planned."""
