"""Object upload service.

This module provides the entry point of the upload pipeline. It plans the
parts of a payload, dispatches them in ascending order to a bounded worker
pool, re-queues parts whose signed URL expired, and completes the upload once
every part has been confirmed.
"""

from __future__ import annotations

import heapq
import io
import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Mapping, Union

from ossupload.common.cancellation import CancellationToken
from ossupload.common.config import MAX_URL_EXPIRATION_MINUTES, Settings, get_settings
from ossupload.common.errors import (
    InvalidConfigurationError,
    ProtocolInvariantError,
    SourceReadError,
    StorageBackendNotConfiguredError,
    TransferCancelledError,
)
from ossupload.domain.chunk_planner import MIN_CHUNK_SIZE, ChunkPlanner
from ossupload.domain.models import Chunk, ObjectDescriptor, PartRange, PartStatus
from ossupload.infra.observability.metrics import TRANSFERS
from ossupload.infra.resiliency.circuit_breaker import (
    CircuitBreakerRegistry,
    registry_for_policy,
)
from ossupload.infra.resiliency.policy import EndpointClass, ResiliencyPolicy
from ossupload.infra.storage.client import PartTransport, SignedUrlService
from ossupload.infra.storage.http_transport import RequestsPartTransport
from ossupload.infra.storage.oss_client import OssSignedUrlService
from ossupload.infra.storage.s3_client import S3SignedUrlService
from ossupload.services.chunk_uploader import ChunkUploader
from ossupload.services.completion import CompletionCoordinator
from ossupload.services.session_manager import UploadSession, UploadSessionManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
Source = Union[bytes, bytearray, memoryview, BinaryIO]


@dataclass(frozen=True, slots=True)
class TransferOptions:
    """Per-transfer tuning knobs."""

    chunk_size: int = MIN_CHUNK_SIZE
    max_parts_per_batch: int = 25
    url_expiration_minutes: int = 10
    concurrency: int = 1

    def __post_init__(self) -> None:
        if self.max_parts_per_batch < 1:
            raise InvalidConfigurationError("max_parts_per_batch must be at least 1")
        if not 1 <= self.url_expiration_minutes <= MAX_URL_EXPIRATION_MINUTES:
            raise InvalidConfigurationError(
                f"url_expiration_minutes must be between 1 and {MAX_URL_EXPIRATION_MINUTES}"
            )
        if self.concurrency < 1:
            raise InvalidConfigurationError("concurrency must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransferOptions":
        return cls(
            chunk_size=int(settings.UPLOAD_CHUNK_SIZE_BYTES),
            max_parts_per_batch=int(settings.UPLOAD_MAX_PARTS_PER_BATCH),
            url_expiration_minutes=int(settings.UPLOAD_URL_EXPIRATION_MINUTES),
            concurrency=int(settings.UPLOAD_CONCURRENCY),
        )


def _read_exactly(stream: BinaryIO, length: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < length:
        block = stream.read(length - len(buffer))
        if not block:
            break
        buffer.extend(block)
    return bytes(buffer)


class _ChunkSource:
    """Reads planned part ranges from bytes or a binary stream.

    Non-seekable streams must be read front to back, which the coordinator
    guarantees by reading each part once, at first dispatch, in ascending order.
    """

    def __init__(self, source: Source, size: int | None = None) -> None:
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._data: bytes | None = bytes(source)
            self._stream: BinaryIO | None = None
            self._seekable = True
            self._base = 0
            if size is not None and size != len(self._data):
                raise InvalidConfigurationError(
                    f"size {size} does not match payload length {len(self._data)}"
                )
            self.size = len(self._data)
            return

        self._data = None
        self._stream = source
        seekable = getattr(source, "seekable", None)
        self._seekable = bool(seekable()) if callable(seekable) else False
        if self._seekable:
            self._base = source.tell()
            if size is None:
                end = source.seek(0, io.SEEK_END)
                source.seek(self._base)
                size = end - self._base
        else:
            self._base = 0
            if size is None:
                raise InvalidConfigurationError(
                    "size is required when the source is not seekable"
                )
        if size < 0:
            raise InvalidConfigurationError("size cannot be negative")
        self.size = size
        self._position = 0

    def read(self, part: PartRange) -> Chunk:
        if self._data is not None:
            payload = self._data[part.start : part.end]
        else:
            if self._seekable:
                self._stream.seek(self._base + part.start)
            elif part.start != self._position:
                raise ProtocolInvariantError(
                    f"non-seekable source read out of order at part {part.index}"
                )
            payload = _read_exactly(self._stream, part.length)
            self._position = part.start + len(payload)
        if len(payload) != part.length:
            raise SourceReadError(
                f"part {part.index}: expected {part.length} bytes, read {len(payload)}"
            )
        return Chunk(index=part.index, start=part.start, end=part.end, payload=payload)


class ObjectUploadService:
    """Uploads objects through signed part URLs.

    Collaborators are injectable; anything not given is built from settings.
    Circuit breakers come from ``breakers``, or else from the process-wide
    registry for the resiliency policy in ``settings``, and are shared by every
    transfer run through this service.
    """

    def __init__(
        self,
        *,
        signed_url_service: SignedUrlService | None = None,
        transport: PartTransport | None = None,
        settings: Settings | None = None,
        options: TransferOptions | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        planner: ChunkPlanner | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._options = options or TransferOptions.from_settings(self._settings)
        self._planner = planner or ChunkPlanner(self._options.chunk_size)
        self._breakers = breakers or registry_for_policy(
            ResiliencyPolicy.from_settings(self._settings)
        )
        self._service = signed_url_service or self._build_signed_url_service(
            self._settings
        )
        self._transport = transport or RequestsPartTransport(
            timeout=float(self._settings.HTTP_TIMEOUT_SECONDS)
        )
        self._sleep = sleep

    @property
    def options(self) -> TransferOptions:
        return self._options

    @staticmethod
    def _build_signed_url_service(settings: Settings) -> SignedUrlService:
        """Build the signed-URL service for the configured backend."""
        backend = (settings.STORAGE_BACKEND or "").strip().lower()
        if backend == "oss":
            if not settings.OSS_ACCESS_TOKEN:
                raise StorageBackendNotConfiguredError("OSS_ACCESS_TOKEN is required")
            return OssSignedUrlService(
                access_token=settings.OSS_ACCESS_TOKEN,
                base_url=settings.OSS_BASE_URL,
                timeout=float(settings.HTTP_TIMEOUT_SECONDS),
            )
        if backend == "s3":
            if not settings.S3_ACCESS_KEY_ID or not settings.S3_SECRET_ACCESS_KEY:
                raise StorageBackendNotConfiguredError(
                    "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY are required"
                )
            return S3SignedUrlService(settings=settings)
        raise StorageBackendNotConfiguredError(
            f"Unsupported storage backend: {backend}. Use 'oss' or 's3'."
        )

    def upload(
        self,
        bucket: str,
        object_key: str,
        source: Source,
        *,
        size: int | None = None,
        metadata: Mapping[str, Any] | None = None,
        content_type: str | None = None,
        cancel_event: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ObjectDescriptor:
        """Upload ``source`` as ``bucket/object_key``.

        Args:
            bucket: Target bucket name.
            object_key: Object key in the bucket.
            source: Payload bytes or a binary file object.
            size: Payload size; required for non-seekable streams.
            metadata: User-defined metadata stored with the object.
            content_type: Optional MIME type for the object.
            cancel_event: Set it to abort the transfer.
            on_progress: Called with ``(confirmed_parts, total_parts)`` after
                each confirmed part.

        Returns:
            ObjectDescriptor of the finished object.

        Raises:
            InvalidConfigurationError: If the source or size is unusable.
            TransferCancelledError: If ``cancel_event`` was set.
            RemoteCallError: If a remote call fails beyond the retry policy.
            CircuitOpenError: If an endpoint's circuit is open.
        """
        if not bucket or not object_key:
            raise InvalidConfigurationError("bucket and object_key are required")
        reader = _ChunkSource(source, size)
        ranges = self._planner.plan(reader.size)

        cancellation = CancellationToken(cancel_event)
        sleep = self._sleep or cancellation.sleep
        policy = self._breakers.policy
        session = UploadSession(
            bucket=bucket,
            object_key=object_key,
            chunk_size=self._planner.chunk_size,
            total_parts=len(ranges),
        )
        manager = UploadSessionManager(
            self._service,
            session,
            breaker=self._breakers.get(EndpointClass.SIGNED_URLS),
            policy=policy,
            max_batch=self._options.max_parts_per_batch,
            expiration_minutes=self._options.url_expiration_minutes,
            cancellation=cancellation,
            sleep=sleep,
        )
        uploader = ChunkUploader(
            self._transport,
            breaker=self._breakers.get(EndpointClass.PART_UPLOAD),
            policy=policy,
            cancellation=cancellation,
            sleep=sleep,
        )
        completion = CompletionCoordinator(
            self._service,
            manager,
            breaker=self._breakers.get(EndpointClass.COMPLETE_UPLOAD),
            policy=policy,
            sleep=sleep,
        )

        logger.info(
            "transfer_started bucket=%s object=%s size=%d parts=%d concurrency=%d",
            bucket,
            object_key,
            reader.size,
            len(ranges),
            self._options.concurrency,
        )
        try:
            self._transfer_parts(ranges, reader, manager, uploader, cancellation, on_progress)
            cancellation.raise_if_cancelled()
            descriptor = completion.complete(metadata, content_type=content_type)
        except TransferCancelledError:
            TRANSFERS.labels(status="cancelled").inc()
            logger.warning(
                "transfer_cancelled object=%s confirmed=%d/%d",
                object_key,
                manager.confirmed_parts,
                len(ranges),
            )
            raise
        except Exception as exc:
            TRANSFERS.labels(status="failed").inc()
            logger.error(
                "transfer_failed object=%s confirmed=%d/%d error=%r",
                object_key,
                manager.confirmed_parts,
                len(ranges),
                exc,
            )
            raise

        TRANSFERS.labels(status="succeeded").inc()
        if descriptor.size != reader.size:
            logger.warning(
                "size_mismatch object=%s expected=%d reported=%d",
                object_key,
                reader.size,
                descriptor.size,
            )
        return descriptor

    def upload_file(
        self,
        bucket: str,
        object_key: str,
        path: str | os.PathLike[str],
        **kwargs: Any,
    ) -> ObjectDescriptor:
        """Upload a local file; keyword arguments are passed to ``upload``."""
        with open(path, "rb") as stream:
            return self.upload(bucket, object_key, stream, **kwargs)

    def _transfer_parts(
        self,
        ranges: list[PartRange],
        reader: _ChunkSource,
        manager: UploadSessionManager,
        uploader: ChunkUploader,
        cancellation: CancellationToken,
        on_progress: ProgressCallback | None,
    ) -> None:
        by_index = {part.index: part for part in ranges}
        # Min-heap of part indices waiting for dispatch; expired parts return here.
        pending = [part.index for part in ranges]
        heapq.heapify(pending)
        chunks: dict[int, Chunk] = {}
        in_flight: dict[Future, tuple[int, int]] = {}
        concurrency = self._options.concurrency

        executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="ossupload-part"
        )
        try:
            while pending or in_flight:
                cancellation.raise_if_cancelled()
                while pending and len(in_flight) < concurrency:
                    index = heapq.heappop(pending)
                    chunk = chunks.get(index)
                    if chunk is None:
                        chunk = chunks[index] = reader.read(by_index[index])
                    url, generation = manager.acquire_url(index)
                    future = executor.submit(uploader.upload_part, chunk, url)
                    in_flight[future] = (index, generation)

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    index, generation = in_flight.pop(future)
                    result = future.result()
                    if result.status is PartStatus.SUCCEEDED:
                        manager.confirm(index, etag=result.etag)
                        chunks.pop(index, None)
                        if on_progress is not None:
                            on_progress(manager.confirmed_parts, manager.total_parts)
                    else:
                        manager.release_expired(index, generation)
                        heapq.heappush(pending, index)
        except BaseException:
            cancellation.cancel()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
