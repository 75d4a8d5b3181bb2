from __future__ import annotations

import threading

from ossupload.common.errors import TransferCancelledError

# Upper bound for a single wait slice when a caller-owned event is also watched.
_POLL_SECONDS = 0.1


class CancellationToken:
    """Transfer-scoped cancellation signal.

    Combines an optional caller-owned ``threading.Event`` with an internal one
    that the coordinator sets when a fatal error aborts the transfer.
    """

    def __init__(self, parent: threading.Event | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (
            self._parent is not None and self._parent.is_set()
        )

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TransferCancelledError("Transfer was cancelled")

    def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds, raising as soon as the token is cancelled."""
        if self._parent is None:
            if self._event.wait(max(0.0, delay)):
                self.raise_if_cancelled()
            return
        remaining = max(0.0, delay)
        while remaining > 0:
            self.raise_if_cancelled()
            step = min(remaining, _POLL_SECONDS)
            if self._event.wait(step):
                break
            remaining -= step
        self.raise_if_cancelled()
