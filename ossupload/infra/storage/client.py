"""Remote collaborator protocols and data types.

This module defines the two contracts the upload pipeline consumes: a service
that issues signed part URLs and finalizes uploads, and a raw byte transport
that PUTs a part to a signed URL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from ossupload.common.cancellation import CancellationToken
from ossupload.domain.models import ObjectDescriptor


@dataclass(frozen=True, slots=True)
class SignedUploadUrls:
    """Result of a signed-URL batch request."""

    upload_key: str
    urls: Sequence[str] = field(repr=False)


class SignedUrlService(Protocol):
    """Protocol for services that issue signed part URLs.

    Implementations raise the classified errors from
    ``ossupload.common.errors`` so the resiliency layer can decide on retries.
    """

    def get_signed_upload_urls(
        self,
        *,
        bucket: str,
        object_key: str,
        first_part: int,
        parts: int,
        upload_key: str | None = None,
        minutes_expiration: int,
    ) -> SignedUploadUrls:
        """Request signed URLs for ``parts`` consecutive parts.

        Args:
            bucket: Target bucket name.
            object_key: Object key in the bucket.
            first_part: 1-based index of the part the first URL is for.
            parts: Number of URLs to issue.
            upload_key: Session key from an earlier batch; None on the first call.
            minutes_expiration: Lifetime of the URLs in minutes.

        Returns:
            SignedUploadUrls with the session key and one URL per part, in order.

        Raises:
            RemoteCallError: If the request fails.
        """
        ...

    def complete_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_key: str,
        metadata: Mapping[str, Any] | None = None,
        content_type: str | None = None,
    ) -> ObjectDescriptor:
        """Finalize the upload session and create the object.

        Args:
            bucket: Target bucket name.
            object_key: Object key in the bucket.
            upload_key: Session key returned by the batch requests.
            metadata: User-defined metadata, stored uninterpreted.
            content_type: Optional MIME type recorded with the object.

        Returns:
            ObjectDescriptor of the finished object.

        Raises:
            RemoteCallError: If the request fails.
        """
        ...


class PartTransport(Protocol):
    """Protocol for the raw byte transport used to PUT parts."""

    def put(
        self,
        url: str,
        payload: bytes,
        *,
        cancellation: CancellationToken | None = None,
    ) -> str | None:
        """Upload ``payload`` to a signed ``url``.

        Returns:
            The ETag reported by storage, if any.

        Raises:
            ExpiredUrlError: If the signed URL was rejected (HTTP 403).
            TransientRemoteError: On timeouts, throttling and 5xx responses.
            NonRetryableRemoteError: On any other failure.
            TransferCancelledError: If ``cancellation`` fires mid-upload.
        """
        ...
