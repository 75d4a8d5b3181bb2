"""Object Storage Service (OSS) signed-URL client.

Implements ``SignedUrlService`` against the OSS ``signeds3upload`` endpoints
using ``requests``. Token acquisition is left to the caller, who passes either
a static access token or a callable returning a fresh one.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping
from urllib.parse import quote

import requests
from pydantic import ValidationError

from ossupload.common.errors import NonRetryableRemoteError
from ossupload.domain.models import ObjectDescriptor
from ossupload.infra.resiliency.policy import EndpointClass
from ossupload.infra.storage.client import SignedUploadUrls
from ossupload.infra.storage.http_errors import (
    raise_for_response,
    wrap_requests_exception,
)
from ossupload.infra.storage.schemas import (
    CompleteSignedS3UploadIn,
    ObjectDetailsOut,
    SignedS3UploadOut,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://developer.api.autodesk.com"
USER_METADATA_HEADER = "x-ads-user-defined-metadata"
META_CONTENT_TYPE_HEADER = "x-ads-meta-Content-Type"

TokenProvider = Callable[[], str]


class OssSignedUrlService:
    """Signed-URL issuing service backed by the OSS REST API."""

    def __init__(
        self,
        *,
        access_token: str | TokenProvider,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not access_token:
            raise ValueError("access_token is required")
        self._token = access_token
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}"}

    def _signed_upload_url(self, bucket: str, object_key: str) -> str:
        return (
            f"{self._base_url}/oss/v2/buckets/{quote(bucket, safe='')}"
            f"/objects/{quote(object_key, safe='')}/signeds3upload"
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
        """Fetch a batch of signed S3 part URLs."""
        params: dict[str, Any] = {
            "parts": int(parts),
            "firstPart": int(first_part),
            "minutesExpiration": int(minutes_expiration),
        }
        if upload_key:
            params["uploadKey"] = upload_key

        endpoint = EndpointClass.SIGNED_URLS.value
        try:
            response = self._session.get(
                self._signed_upload_url(bucket, object_key),
                params=params,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise wrap_requests_exception(exc, endpoint=endpoint) from exc
        raise_for_response(response, endpoint=endpoint)

        payload = _parse(SignedS3UploadOut, response, endpoint=endpoint)
        logger.debug(
            "signed_urls_issued bucket=%s object=%s first_part=%d count=%d",
            bucket,
            object_key,
            first_part,
            len(payload.urls),
        )
        return SignedUploadUrls(upload_key=payload.upload_key, urls=tuple(payload.urls))

    def complete_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_key: str,
        metadata: Mapping[str, Any] | None = None,
        content_type: str | None = None,
    ) -> ObjectDescriptor:
        """Complete the signed S3 upload; metadata travels in headers."""
        headers = {**self._headers(), "Content-Type": "application/json"}
        if metadata:
            headers[USER_METADATA_HEADER] = json.dumps(
                dict(metadata), separators=(",", ":"), ensure_ascii=False
            )
        if content_type:
            headers[META_CONTENT_TYPE_HEADER] = content_type

        body = CompleteSignedS3UploadIn(upload_key=upload_key)
        endpoint = EndpointClass.COMPLETE_UPLOAD.value
        try:
            response = self._session.post(
                self._signed_upload_url(bucket, object_key),
                json=body.model_dump(by_alias=True),
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise wrap_requests_exception(exc, endpoint=endpoint) from exc
        raise_for_response(response, endpoint=endpoint)

        details = _parse(ObjectDetailsOut, response, endpoint=endpoint)
        logger.debug(
            "upload_completed object_id=%s size=%d", details.object_id, details.size
        )
        return ObjectDescriptor(
            bucket=details.bucket_key,
            object_key=details.object_key,
            object_id=details.object_id,
            size=details.size,
            content_type=details.content_type,
            location=details.location,
            sha1=details.sha1,
        )


def _parse(model: type[Any], response: requests.Response, *, endpoint: str) -> Any:
    try:
        return model.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise NonRetryableRemoteError(
            f"{endpoint} returned an unexpected payload: {exc}",
            endpoint=endpoint,
            status_code=response.status_code,
        ) from exc
