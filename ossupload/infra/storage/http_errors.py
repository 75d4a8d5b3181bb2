"""Classification of HTTP outcomes into pipeline errors.

| Condition                                  | Error                      |
|--------------------------------------------|----------------------------|
| 403 on a signed-URL PUT                    | ExpiredUrlError            |
| 408, 429, 5xx                              | TransientRemoteError       |
| any other non-2xx                          | NonRetryableRemoteError    |
| requests.Timeout / requests.ConnectionError| TransientRemoteError       |
| other requests.RequestException            | NonRetryableRemoteError    |
"""

from __future__ import annotations

import requests

from ossupload.common.errors import (
    ExpiredUrlError,
    NonRetryableRemoteError,
    RemoteCallError,
    TransientRemoteError,
)

TRANSIENT_STATUS_CODES = frozenset({408, 429})

# Keep error messages readable when a server returns an HTML error page.
_MAX_BODY_IN_MESSAGE = 512


def error_for_status(
    status_code: int,
    *,
    endpoint: str,
    detail: str = "",
    signed_url: bool = False,
) -> RemoteCallError | None:
    """Return the error for a non-success status code, or None on 2xx."""
    if 200 <= status_code < 300:
        return None
    message = f"{endpoint} returned HTTP {status_code}"
    if detail:
        message = f"{message}: {detail[:_MAX_BODY_IN_MESSAGE]}"
    if status_code == 403 and signed_url:
        return ExpiredUrlError(message, endpoint=endpoint, status_code=status_code)
    if status_code in TRANSIENT_STATUS_CODES or 500 <= status_code < 600:
        return TransientRemoteError(message, endpoint=endpoint, status_code=status_code)
    return NonRetryableRemoteError(message, endpoint=endpoint, status_code=status_code)


def raise_for_response(
    response: requests.Response, *, endpoint: str, signed_url: bool = False
) -> None:
    error = error_for_status(
        response.status_code,
        endpoint=endpoint,
        detail=(response.text or "").strip(),
        signed_url=signed_url,
    )
    if error is not None:
        raise error


def wrap_requests_exception(
    exc: requests.RequestException, *, endpoint: str
) -> RemoteCallError:
    """Map a transport-level ``requests`` failure to a classified error."""
    message = f"{endpoint} request failed: {type(exc).__name__}: {exc}"
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return TransientRemoteError(message, endpoint=endpoint)
    return NonRetryableRemoteError(message, endpoint=endpoint)
