"""Resilient chunked uploads through signed part URLs."""

from ossupload.common.errors import (
    CircuitOpenError,
    ExpiredUrlError,
    IncompleteTransferError,
    InvalidConfigurationError,
    NonRetryableRemoteError,
    ProtocolInvariantError,
    RemoteCallError,
    SourceReadError,
    StorageBackendNotConfiguredError,
    TransferCancelledError,
    TransientRemoteError,
    UploadError,
)
from ossupload.domain.models import ObjectDescriptor
from ossupload.infra.resiliency import CircuitBreakerRegistry, ResiliencyPolicy
from ossupload.services import ObjectUploadService, TransferOptions

__version__ = "0.1.0"

__all__ = [
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "ExpiredUrlError",
    "IncompleteTransferError",
    "InvalidConfigurationError",
    "NonRetryableRemoteError",
    "ObjectDescriptor",
    "ObjectUploadService",
    "ProtocolInvariantError",
    "RemoteCallError",
    "ResiliencyPolicy",
    "SourceReadError",
    "StorageBackendNotConfiguredError",
    "TransferCancelledError",
    "TransferOptions",
    "TransientRemoteError",
    "UploadError",
    "__version__",
]
