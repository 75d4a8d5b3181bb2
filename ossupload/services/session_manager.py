"""Upload session state and signed part URL pool management."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from ossupload.common.cancellation import CancellationToken
from ossupload.common.errors import (
    InvalidConfigurationError,
    NonRetryableRemoteError,
    ProtocolInvariantError,
)
from ossupload.domain.models import SignedPartBatch
from ossupload.infra.observability.metrics import BATCH_REQUESTS
from ossupload.infra.resiliency.circuit_breaker import CircuitBreaker
from ossupload.infra.resiliency.policy import EndpointClass, ResiliencyPolicy
from ossupload.infra.resiliency.retry import execute_with_retry
from ossupload.infra.storage.client import SignedUrlService

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH = 25
DEFAULT_EXPIRATION_MINUTES = 10


@dataclass
class UploadSession:
    """Mutable state of one multipart transfer.

    ``cursor`` is the highest part index such that every part up to it is
    confirmed; with sequential uploads it is simply the last confirmed part.
    """

    bucket: str
    object_key: str
    chunk_size: int
    total_parts: int
    session_key: str | None = None
    cursor: int = 0
    confirmed: set[int] = field(default_factory=set)
    in_flight: set[int] = field(default_factory=set)
    etags: dict[int, str] = field(default_factory=dict)
    rejections: dict[int, int] = field(default_factory=dict)
    pool: deque[tuple[int, str]] = field(default_factory=deque, repr=False)

    @property
    def remaining_parts(self) -> int:
        return self.total_parts - len(self.confirmed)

    def last_outstanding_part(self) -> int | None:
        for index in range(self.total_parts, self.cursor, -1):
            if index not in self.confirmed:
                return index
        return None


class UploadSessionManager:
    """Issues signed part URLs for one session and tracks confirmed parts.

    The manager is the single writer of the URL pool and the cursor; every
    mutation happens under its lock. Batches are requested lazily: only when
    the pool has no URL for the requested part, after an expiry, or once the
    current batch's expiration time has passed.
    """

    def __init__(
        self,
        service: SignedUrlService,
        session: UploadSession,
        *,
        breaker: CircuitBreaker,
        policy: ResiliencyPolicy,
        max_batch: int = DEFAULT_MAX_BATCH,
        expiration_minutes: int = DEFAULT_EXPIRATION_MINUTES,
        cancellation: CancellationToken | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_batch < 1:
            raise InvalidConfigurationError("max_batch must be at least 1")
        if expiration_minutes < 1:
            raise InvalidConfigurationError("expiration_minutes must be at least 1")
        self._service = service
        self._session = session
        self._breaker = breaker
        self._policy = policy
        self._max_batch = max_batch
        self._expiration_minutes = expiration_minutes
        self._cancellation = cancellation
        self._sleep = sleep or (cancellation.sleep if cancellation else time.sleep)
        self._clock = clock
        self._lock = threading.RLock()
        self._batch: SignedPartBatch | None = None
        self._generation = 0
        self._refill_reason = "refill"

    @property
    def session(self) -> UploadSession:
        return self._session

    @property
    def session_key(self) -> str | None:
        return self._session.session_key

    @property
    def total_parts(self) -> int:
        return self._session.total_parts

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._session.cursor

    @property
    def confirmed_parts(self) -> int:
        with self._lock:
            return len(self._session.confirmed)

    @property
    def remaining_parts(self) -> int:
        with self._lock:
            return self._session.remaining_parts

    def request_batch(self, first_part: int) -> SignedPartBatch:
        """Request signed URLs for the outstanding parts from ``first_part`` on.

        The batch never covers more parts than remain; URLs for parts that are
        already confirmed are not added to the pool.
        """
        with self._lock:
            if self._cancellation is not None:
                self._cancellation.raise_if_cancelled()
            session = self._session
            if not 1 <= first_part <= session.total_parts:
                raise ProtocolInvariantError(
                    f"first_part {first_part} outside 1..{session.total_parts}"
                )
            last = session.last_outstanding_part()
            if last is None or first_part > last:
                raise ProtocolInvariantError(
                    f"no outstanding parts at or after part {first_part}"
                )
            count = min(self._max_batch, last - first_part + 1)
            reason = "initial" if session.session_key is None else self._refill_reason

            response = execute_with_retry(
                lambda: self._service.get_signed_upload_urls(
                    bucket=session.bucket,
                    object_key=session.object_key,
                    first_part=first_part,
                    parts=count,
                    upload_key=session.session_key,
                    minutes_expiration=self._expiration_minutes,
                ),
                policy=self._policy,
                breaker=self._breaker,
                sleep=self._sleep,
            )

            if session.session_key is None:
                if not response.upload_key:
                    raise ProtocolInvariantError("service did not mint an upload key")
                session.session_key = response.upload_key
            elif response.upload_key != session.session_key:
                raise ProtocolInvariantError(
                    "service returned a different upload key for the same session"
                )
            urls = tuple(response.urls)
            if len(urls) != count:
                raise ProtocolInvariantError(
                    f"requested {count} URLs from part {first_part}, got {len(urls)}"
                )

            self._generation += 1
            self._refill_reason = "refill"
            batch = SignedPartBatch(
                urls=urls,
                first_part=first_part,
                expires_at=self._clock() + self._expiration_minutes * 60,
                generation=self._generation,
            )
            self._batch = batch
            session.pool = deque(
                (first_part + offset, url)
                for offset, url in enumerate(urls)
                if first_part + offset not in session.confirmed
            )
            BATCH_REQUESTS.labels(reason=reason).inc()
            logger.info(
                "signed_url_batch object=%s first_part=%d count=%d reason=%s generation=%d",
                session.object_key,
                first_part,
                count,
                reason,
                self._generation,
            )
            return batch

    def acquire_url(self, part: int) -> tuple[str, int]:
        """Take the signed URL for ``part`` out of the pool.

        Returns:
            The URL and the generation of the batch it came from.

        Raises:
            ProtocolInvariantError: If the part is confirmed or already in flight.
        """
        with self._lock:
            session = self._session
            if part in session.confirmed:
                raise ProtocolInvariantError(f"part {part} is already confirmed")
            if part in session.in_flight:
                raise ProtocolInvariantError(f"part {part} is already being uploaded")
            if self._batch is not None and self._clock() >= self._batch.expires_at:
                logger.info(
                    "signed_url_batch_expired generation=%d", self._batch.generation
                )
                self._discard_pool(reason="expired")
            # Entries ahead of ``part`` belong to parts that were dispatched
            # from an earlier batch.
            while session.pool and session.pool[0][0] < part:
                session.pool.popleft()
            if not session.pool or session.pool[0][0] != part:
                self.request_batch(part)
            index, url = session.pool.popleft()
            if index != part:
                raise ProtocolInvariantError(
                    f"URL pool is misaligned: expected part {part}, found {index}"
                )
            session.in_flight.add(part)
            return url, self._generation

    def confirm(self, part: int, *, etag: str | None = None) -> None:
        """Record a successful upload and advance the cursor."""
        with self._lock:
            session = self._session
            if part in session.confirmed:
                raise ProtocolInvariantError(f"part {part} confirmed twice")
            if part not in session.in_flight:
                raise ProtocolInvariantError(f"part {part} was never dispatched")
            session.in_flight.discard(part)
            session.confirmed.add(part)
            session.rejections.pop(part, None)
            if etag:
                session.etags[part] = etag
            while session.cursor + 1 in session.confirmed:
                session.cursor += 1
            if session.pool and any(index == part for index, _ in session.pool):
                session.pool = deque(e for e in session.pool if e[0] != part)
            logger.debug(
                "part_confirmed part=%d cursor=%d remaining=%d",
                part,
                session.cursor,
                session.remaining_parts,
            )

    def release_expired(self, part: int, generation: int) -> None:
        """Return an expired part for re-upload without advancing the cursor.

        The pool is discarded when the rejected URL came from the current
        batch, so the next ``acquire_url(part)`` requests a fresh batch that
        starts at the failed part.

        Raises:
            NonRetryableRemoteError: If freshly issued URLs for ``part`` were
                rejected more than ``policy.retry_count`` times in a row.
        """
        with self._lock:
            session = self._session
            if part not in session.in_flight:
                raise ProtocolInvariantError(f"part {part} was never dispatched")
            session.in_flight.discard(part)
            rejections = session.rejections.get(part, 0)
            # Stale URLs predate the latest refill and do not count.
            if generation == self._generation:
                self._discard_pool(reason="expired")
                rejections += 1
                session.rejections[part] = rejections
            logger.warning(
                "signed_url_rejected part=%d generation=%d cursor=%d rejections=%d",
                part,
                generation,
                session.cursor,
                rejections,
            )
            if rejections > self._policy.retry_count:
                raise NonRetryableRemoteError(
                    f"signed URLs for part {part} were rejected {rejections} times in a row",
                    endpoint=EndpointClass.PART_UPLOAD.value,
                    status_code=403,
                )

    def _discard_pool(self, *, reason: str) -> None:
        self._session.pool.clear()
        self._batch = None
        self._refill_reason = reason
