"""HTTP PUT transport for signed part URLs."""

from __future__ import annotations

import logging

import requests

from ossupload.common.cancellation import CancellationToken
from ossupload.infra.resiliency.policy import EndpointClass
from ossupload.infra.storage.http_errors import (
    raise_for_response,
    wrap_requests_exception,
)

logger = logging.getLogger(__name__)

ENDPOINT = EndpointClass.PART_UPLOAD.value
DEFAULT_TIMEOUT_SECONDS = 60.0
_READ_BLOCK = 64 * 1024


class _CancellableBody:
    """File-like request body that stops streaming once cancelled.

    Exposing ``__len__`` makes requests send a Content-Length header instead
    of chunked encoding, which signed storage URLs reject.
    """

    def __init__(self, payload: bytes, cancellation: CancellationToken) -> None:
        self._view = memoryview(payload)
        self._offset = 0
        self._cancellation = cancellation

    def __len__(self) -> int:
        return len(self._view) - self._offset

    def read(self, size: int = -1) -> bytes:
        self._cancellation.raise_if_cancelled()
        if size is None or size < 0:
            size = len(self)
        size = min(size, _READ_BLOCK, len(self))
        block = self._view[self._offset : self._offset + size].tobytes()
        self._offset += len(block)
        return block


class RequestsPartTransport:
    """Uploads part payloads with ``requests``.

    Signed URLs carry their own authorization, so no auth header is added.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def put(
        self,
        url: str,
        payload: bytes,
        *,
        cancellation: CancellationToken | None = None,
    ) -> str | None:
        """Upload a part; returns the ETag header when storage sends one."""
        body: bytes | _CancellableBody = payload
        if cancellation is not None:
            cancellation.raise_if_cancelled()
            if payload:
                body = _CancellableBody(payload, cancellation)
        try:
            response = self._session.put(
                url,
                data=body,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(len(payload)),
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise wrap_requests_exception(exc, endpoint=ENDPOINT) from exc
        raise_for_response(response, endpoint=ENDPOINT, signed_url=True)
        logger.debug("part_put status=%s bytes=%d", response.status_code, len(payload))
        return response.headers.get("ETag")
