from __future__ import annotations

import logging
import time
from typing import Callable

from ossupload.common.cancellation import CancellationToken
from ossupload.common.errors import ExpiredUrlError, TransferCancelledError
from ossupload.domain.models import Chunk, PartStatus, PartUploadResult
from ossupload.infra.observability.metrics import PART_LATENCY, PART_UPLOADS
from ossupload.infra.resiliency.circuit_breaker import CircuitBreaker
from ossupload.infra.resiliency.policy import ResiliencyPolicy
from ossupload.infra.resiliency.retry import execute_with_retry
from ossupload.infra.storage.client import PartTransport

logger = logging.getLogger(__name__)


class ChunkUploader:
    """Uploads one part to its signed URL under the part-upload policy.

    A rejected (expired) URL is reported as ``PartStatus.EXPIRED`` rather than
    raised, so the coordinator can put the part back in line. Every other
    failure that survives the retry policy propagates and aborts the transfer.
    """

    def __init__(
        self,
        transport: PartTransport,
        *,
        breaker: CircuitBreaker,
        policy: ResiliencyPolicy,
        cancellation: CancellationToken | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._transport = transport
        self._breaker = breaker
        self._policy = policy
        self._cancellation = cancellation
        self._sleep = sleep or (cancellation.sleep if cancellation else time.sleep)

    def upload_part(self, chunk: Chunk, url: str) -> PartUploadResult:
        started = time.perf_counter()
        try:
            etag = execute_with_retry(
                lambda: self._transport.put(
                    url, chunk.payload, cancellation=self._cancellation
                ),
                policy=self._policy,
                breaker=self._breaker,
                sleep=self._sleep,
            )
        except ExpiredUrlError:
            PART_UPLOADS.labels(outcome="expired").inc()
            logger.info("part_url_expired part=%d", chunk.index)
            return PartUploadResult(part_index=chunk.index, status=PartStatus.EXPIRED)
        except TransferCancelledError:
            PART_UPLOADS.labels(outcome="cancelled").inc()
            raise
        except Exception as exc:
            PART_UPLOADS.labels(outcome="failed").inc()
            logger.error("part_upload_failed part=%d error=%r", chunk.index, exc)
            raise
        finally:
            PART_LATENCY.observe(time.perf_counter() - started)

        PART_UPLOADS.labels(outcome="succeeded").inc()
        logger.debug("part_uploaded part=%d bytes=%d", chunk.index, chunk.length)
        return PartUploadResult(
            part_index=chunk.index, status=PartStatus.SUCCEEDED, etag=etag
        )
