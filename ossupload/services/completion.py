from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping

from ossupload.common.errors import IncompleteTransferError, ProtocolInvariantError
from ossupload.domain.models import CompletionRequest, ObjectDescriptor
from ossupload.infra.resiliency.circuit_breaker import CircuitBreaker
from ossupload.infra.resiliency.policy import ResiliencyPolicy
from ossupload.infra.resiliency.retry import execute_with_retry
from ossupload.infra.storage.client import SignedUrlService
from ossupload.services.session_manager import UploadSessionManager

logger = logging.getLogger(__name__)


class CompletionCoordinator:
    """Finalizes a session once every part has been confirmed.

    Completion is requested at most once per session, even when the call
    fails; a failed completion aborts the transfer.
    """

    def __init__(
        self,
        service: SignedUrlService,
        manager: UploadSessionManager,
        *,
        breaker: CircuitBreaker,
        policy: ResiliencyPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._service = service
        self._manager = manager
        self._breaker = breaker
        self._policy = policy
        self._sleep = sleep
        self._lock = threading.Lock()
        self._requested = False

    @property
    def requested(self) -> bool:
        return self._requested

    def complete(
        self,
        metadata: Mapping[str, Any] | None = None,
        *,
        content_type: str | None = None,
    ) -> ObjectDescriptor:
        """Ask the remote service to assemble the object.

        Args:
            metadata: User-defined metadata, forwarded as-is.
            content_type: Optional MIME type for the object.

        Returns:
            ObjectDescriptor reported by the remote service.

        Raises:
            IncompleteTransferError: If any part is still outstanding.
            ProtocolInvariantError: If completion was already requested or the
                session never obtained a key.
        """
        with self._lock:
            if self._requested:
                raise ProtocolInvariantError("completion was already requested")
            remaining = self._manager.remaining_parts
            if remaining:
                raise IncompleteTransferError(
                    f"{remaining} of {self._manager.total_parts} parts are not confirmed"
                )
            upload_key = self._manager.session_key
            if not upload_key:
                raise ProtocolInvariantError("session has no upload key")
            self._requested = True

        session = self._manager.session
        request = CompletionRequest(upload_key=upload_key, metadata=dict(metadata or {}))
        descriptor = execute_with_retry(
            lambda: self._service.complete_upload(
                bucket=session.bucket,
                object_key=session.object_key,
                upload_key=request.upload_key,
                metadata=request.metadata,
                content_type=content_type,
            ),
            policy=self._policy,
            breaker=self._breaker,
            sleep=self._sleep,
        )
        logger.info(
            "upload_completed object=%s object_id=%s size=%d parts=%d",
            session.object_key,
            descriptor.object_id,
            descriptor.size,
            session.total_parts,
        )
        return descriptor
