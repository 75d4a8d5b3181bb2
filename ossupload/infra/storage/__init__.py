"""Remote storage collaborators.

This package defines the protocols the upload pipeline consumes and their
implementations for the OSS REST API, S3-compatible services and plain HTTP
PUT transport.
"""

from .client import PartTransport, SignedUploadUrls, SignedUrlService
from .http_transport import RequestsPartTransport
from .oss_client import OssSignedUrlService
from .s3_client import S3SignedUrlService

__all__ = [
    "OssSignedUrlService",
    "PartTransport",
    "RequestsPartTransport",
    "S3SignedUrlService",
    "SignedUploadUrls",
    "SignedUrlService",
]
