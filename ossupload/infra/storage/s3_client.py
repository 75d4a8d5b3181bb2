"""S3-compatible signed-URL service.

This module implements ``SignedUrlService`` on top of native S3 multipart
uploads, for AWS S3, MinIO and other S3-compatible services. The multipart
``UploadId`` plays the role of the session key.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ossupload.common.errors import (
    NonRetryableRemoteError,
    RemoteCallError,
    TransientRemoteError,
)
from ossupload.domain.models import ObjectDescriptor
from ossupload.infra.resiliency.policy import EndpointClass
from ossupload.infra.storage.client import SignedUploadUrls

if TYPE_CHECKING:
    from ossupload.common.config import Settings

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "RequestTimeout",
    "InternalError",
    "ServiceUnavailable",
    "InternalServerError",
}


def _error_code(exc: ClientError) -> str:
    return (exc.response.get("Error", {}) or {}).get("Code", "")


def wrap_boto_error(exc: Exception, *, endpoint: str) -> RemoteCallError:
    """Classify a boto3/botocore failure."""
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return TransientRemoteError(f"{endpoint} unreachable: {exc}", endpoint=endpoint)
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = error.get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{endpoint} failed: {code or 'ClientError'}: {error.get('Message') or exc}"
        if code in _TRANSIENT_CODES or (isinstance(status, int) and status >= 500):
            return TransientRemoteError(message, endpoint=endpoint, status_code=status)
        return NonRetryableRemoteError(message, endpoint=endpoint, status_code=status)
    return NonRetryableRemoteError(f"{endpoint} failed: {exc}", endpoint=endpoint)


def _metadata_value(value: Any) -> str:
    # S3 user metadata only holds strings.
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class S3SignedUrlService:
    """S3-compatible signed-URL issuing service.

    Uses boto3 for the control-plane calls; part bytes travel through the
    presigned ``upload_part`` URLs.
    """

    def __init__(self, *, settings: "Settings | None" = None, client: Any = None) -> None:
        """Initialize with an existing boto3 client or one built from settings.

        Raises:
            ValueError: If neither ``client`` nor ``settings`` is given.
        """
        if client is None:
            if settings is None:
                raise ValueError("settings or client is required")
            client = self._build_client(settings)
        self._client = client

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        import boto3
        from botocore.config import Config

        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config = Config(s3={"addressing_style": addressing_style})

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

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
        """Start the multipart upload if needed and presign ``parts`` URLs."""
        endpoint = EndpointClass.SIGNED_URLS.value
        if not upload_key:
            try:
                response = self._client.create_multipart_upload(
                    Bucket=bucket, Key=object_key
                )
            except Exception as exc:
                raise wrap_boto_error(exc, endpoint=endpoint) from exc
            upload_key = response.get("UploadId")
            if not upload_key:
                raise NonRetryableRemoteError(
                    "S3 response missing UploadId", endpoint=endpoint
                )
            logger.info(
                "s3_multipart_created bucket=%s object=%s", bucket, object_key
            )

        urls: list[str] = []
        for part_number in range(first_part, first_part + parts):
            try:
                url = self._client.generate_presigned_url(
                    "upload_part",
                    Params={
                        "Bucket": bucket,
                        "Key": object_key,
                        "UploadId": upload_key,
                        "PartNumber": int(part_number),
                    },
                    ExpiresIn=int(minutes_expiration) * 60,
                )
            except Exception as exc:
                raise wrap_boto_error(exc, endpoint=endpoint) from exc
            if not url:
                raise NonRetryableRemoteError(
                    "Generated presigned URL is empty", endpoint=endpoint
                )
            urls.append(str(url))

        return SignedUploadUrls(upload_key=str(upload_key), urls=tuple(urls))

    def complete_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_key: str,
        metadata: Mapping[str, Any] | None = None,
        content_type: str | None = None,
    ) -> ObjectDescriptor:
        """Combine the uploaded parts, then apply metadata and read back the object.

        Part ETags are collected server-side with ``list_parts``. S3 only sets
        metadata when an object is written, so metadata and content type are
        applied with an in-place copy after completion. A retry that finds the
        upload already gone skips straight to the metadata copy; ``head_object``
        fails if the object was never written.
        """
        endpoint = EndpointClass.COMPLETE_UPLOAD.value
        try:
            try:
                parts: list[dict[str, Any]] | None = self._list_parts(
                    bucket, object_key, upload_key
                )
            except ClientError as exc:
                if _error_code(exc) != "NoSuchUpload":
                    raise
                # An earlier attempt completed the upload but its response was lost.
                parts = None
            if parts is not None:
                try:
                    self._client.complete_multipart_upload(
                        Bucket=bucket,
                        Key=object_key,
                        UploadId=upload_key,
                        MultipartUpload={"Parts": parts},
                    )
                except ClientError as exc:
                    if _error_code(exc) != "NoSuchUpload":
                        raise
                    parts = None
            if parts is None:
                logger.info(
                    "multipart_upload_already_completed object=%s upload=%s",
                    object_key,
                    upload_key,
                )
            if metadata or content_type:
                params: dict[str, Any] = {
                    "Bucket": bucket,
                    "Key": object_key,
                    "CopySource": {"Bucket": bucket, "Key": object_key},
                    "MetadataDirective": "REPLACE",
                    "Metadata": {
                        str(k): _metadata_value(v) for k, v in (metadata or {}).items()
                    },
                }
                if content_type:
                    params["ContentType"] = content_type
                self._client.copy_object(**params)
            head = self._client.head_object(Bucket=bucket, Key=object_key)
        except RemoteCallError:
            raise
        except Exception as exc:
            raise wrap_boto_error(exc, endpoint=endpoint) from exc

        size = head.get("ContentLength")
        return ObjectDescriptor(
            bucket=bucket,
            object_key=object_key,
            object_id=f"s3://{bucket}/{object_key}",
            size=int(size) if size is not None else 0,
            content_type=head.get("ContentType"),
            etag=head.get("ETag"),
        )

    def _list_parts(
        self, bucket: str, object_key: str, upload_key: str
    ) -> list[dict[str, Any]]:
        paginator = self._client.get_paginator("list_parts")
        parts: list[dict[str, Any]] = []
        for page in paginator.paginate(Bucket=bucket, Key=object_key, UploadId=upload_key):
            for part in page.get("Parts", []) or []:
                parts.append(
                    {"ETag": part["ETag"], "PartNumber": int(part["PartNumber"])}
                )
        if not parts:
            raise NonRetryableRemoteError(
                "No uploaded parts found for upload",
                endpoint=EndpointClass.COMPLETE_UPLOAD.value,
            )
        return sorted(parts, key=lambda p: p["PartNumber"])
