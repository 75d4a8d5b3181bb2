"""Tests for ObjectUploadService."""

from __future__ import annotations

import io
import math
import threading
from unittest.mock import MagicMock, patch

import pytest

from ossupload.common.config import Settings
from ossupload.common.errors import (
    ExpiredUrlError,
    InvalidConfigurationError,
    NonRetryableRemoteError,
    SourceReadError,
    StorageBackendNotConfiguredError,
    TransferCancelledError,
    TransientRemoteError,
)
from ossupload.domain.chunk_planner import ChunkPlanner
from ossupload.infra.storage.oss_client import OssSignedUrlService
from ossupload.infra.storage.s3_client import S3SignedUrlService
from ossupload.services.upload_service import ObjectUploadService, TransferOptions
from tests.services.mock_remote import FakeSignedUrlService, FakeTransport

MIB = 1024 * 1024
CHUNK = 5


def _payload(size: int) -> bytes:
    return (bytes(range(251)) * (size // 251 + 1))[:size]


class _NonSeekableStream:
    """Pipe-like stream that returns at most three bytes per read."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self._buffer.read()
        return self._buffer.read(min(size, 3))

    def seekable(self) -> bool:
        return False


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def remote(transport):
    return FakeSignedUrlService(transport=transport)


@pytest.fixture()
def make_service(remote, transport, registry, sleeper):
    def factory(*, concurrency=1, max_batch=25, chunk_size=CHUNK, sleep=sleeper, **kwargs):
        options = TransferOptions(
            chunk_size=chunk_size,
            max_parts_per_batch=max_batch,
            concurrency=concurrency,
        )
        return ObjectUploadService(
            signed_url_service=kwargs.pop("signed_url_service", remote),
            transport=kwargs.pop("transport", transport),
            settings=Settings(),
            options=options,
            breakers=registry,
            planner=ChunkPlanner(chunk_size, minimum_chunk_size=1),
            sleep=sleep,
            **kwargs,
        )

    return factory


class TestUploadScenarios:
    def test_twelve_mib_in_five_mib_parts(self, remote, transport, registry, sleeper):
        payload = _payload(12 * MIB)
        service = ObjectUploadService(
            signed_url_service=remote,
            transport=transport,
            settings=Settings(),
            breakers=registry,
            sleep=sleeper,
        )

        descriptor = service.upload("bucket", "twelve.bin", payload)

        assert [(r["first_part"], r["parts"]) for r in remote.batch_requests] == [(1, 3)]
        assert {i: len(d) for i, d in transport.uploaded.items()} == {
            1: 5 * MIB,
            2: 5 * MIB,
            3: 2 * MIB,
        }
        assert len(remote.completions) == 1
        assert descriptor.size == 12 * MIB
        assert transport.assembled() == payload

    def test_every_third_put_rejected(self, make_service, remote):
        transport = FakeTransport(expire_every=3)
        remote.transport = transport
        payload = _payload(6 * CHUNK)

        descriptor = make_service(transport=transport).upload("bucket", "o", payload)

        assert sorted(transport.successes) == [1, 2, 3, 4, 5, 6]
        assert transport.expired == [3, 5]
        assert [r["first_part"] for r in remote.batch_requests] == [1, 3, 5]
        assert len(remote.batch_requests) <= math.ceil(6 / 25) + len(transport.expired)
        assert transport.assembled() == payload
        assert descriptor.size == len(payload)

    def test_refills_respect_batch_size(self, make_service, remote, transport):
        payload = _payload(7 * CHUNK + 2)

        make_service(max_batch=3).upload("bucket", "o", payload)

        assert [(r["first_part"], r["parts"]) for r in remote.batch_requests] == [
            (1, 3),
            (4, 3),
            (7, 2),
        ]
        assert transport.assembled() == payload

    def test_concurrent_upload_with_expiries(self, make_service, remote):
        def pause():
            threading.Event().wait(0.001)

        def rejected():
            return ExpiredUrlError("HTTP 403", endpoint="part-upload", status_code=403)

        transport = FakeTransport(
            failures={3: [rejected()], 8: [rejected(), rejected()], 15: [rejected()]},
            delay=pause,
        )
        remote.transport = transport
        payload = _payload(20 * CHUNK + 1)

        make_service(transport=transport, concurrency=4).upload("bucket", "o", payload)

        assert sorted(transport.successes) == list(range(1, 22))
        assert len(transport.puts) == 21 + 4
        assert transport.max_active <= 4
        assert len(remote.batch_requests) <= 1 + 4
        assert len(remote.completions) == 1
        assert transport.assembled() == payload

    def test_empty_payload_uploads_single_empty_part(self, make_service, remote, transport):
        descriptor = make_service().upload("bucket", "empty", b"")

        assert [(r["first_part"], r["parts"]) for r in remote.batch_requests] == [(1, 1)]
        assert transport.uploaded == {1: b""}
        assert descriptor.size == 0

    def test_forwards_metadata_and_content_type(self, make_service, remote):
        make_service().upload(
            "bucket", "o", b"abc", metadata={"k": "v"}, content_type="text/plain"
        )

        assert remote.completions[0]["metadata"] == {"k": "v"}
        assert remote.completions[0]["content_type"] == "text/plain"

    def test_reports_progress(self, make_service):
        progress = []

        make_service().upload(
            "bucket", "o", _payload(3 * CHUNK), on_progress=lambda *a: progress.append(a)
        )

        assert progress == [(1, 3), (2, 3), (3, 3)]


class TestSources:
    def test_seekable_stream_from_current_position(self, make_service, transport):
        payload = _payload(2 * CHUNK + 3)
        stream = io.BytesIO(b"xyz" + payload)
        stream.seek(3)

        make_service().upload("bucket", "o", stream)

        assert transport.assembled() == payload

    def test_non_seekable_stream_with_size(self, make_service, transport):
        payload = _payload(3 * CHUNK + 4)

        make_service(concurrency=2).upload(
            "bucket", "o", _NonSeekableStream(payload), size=len(payload)
        )

        assert transport.assembled() == payload

    def test_non_seekable_stream_requires_size(self, make_service, remote):
        with pytest.raises(InvalidConfigurationError, match="size is required"):
            make_service().upload("bucket", "o", _NonSeekableStream(b"abc"))

        assert remote.batch_requests == []

    def test_short_stream_fails(self, make_service, remote):
        with pytest.raises(SourceReadError):
            make_service().upload(
                "bucket", "o", _NonSeekableStream(_payload(CHUNK + 1)), size=3 * CHUNK
            )

        assert remote.completions == []

    def test_size_must_match_bytes_payload(self, make_service):
        with pytest.raises(InvalidConfigurationError):
            make_service().upload("bucket", "o", b"abc", size=4)

    def test_upload_file(self, make_service, transport, tmp_path):
        payload = _payload(4 * CHUNK)
        path = tmp_path / "data.bin"
        path.write_bytes(payload)

        descriptor = make_service().upload_file("bucket", "data.bin", path)

        assert transport.assembled() == payload
        assert descriptor.object_key == "data.bin"


class TestFailuresAndCancellation:
    def test_fatal_part_failure_aborts_transfer(self, make_service, remote):
        transport = FakeTransport(
            failures={2: [NonRetryableRemoteError("HTTP 400", endpoint="part-upload")]}
        )

        with pytest.raises(NonRetryableRemoteError):
            make_service(transport=transport).upload("bucket", "o", _payload(4 * CHUNK))

        assert transport.successes == [1]
        assert remote.completions == []

    def test_persistently_rejected_urls_abort_transfer(
        self, make_service, remote, policy, sleeper
    ):
        transport = FakeTransport(expire_every=1)
        remote.transport = transport

        with pytest.raises(NonRetryableRemoteError, match="part 1"):
            make_service(transport=transport).upload("bucket", "o", _payload(2 * CHUNK))

        assert len(transport.puts) == policy.retry_count + 1
        assert len(remote.batch_requests) == policy.retry_count + 1
        assert sleeper.delays == []
        assert remote.completions == []

    def test_cancel_event_stops_transfer(self, make_service, remote, transport):
        event = threading.Event()

        with pytest.raises(TransferCancelledError):
            make_service().upload(
                "bucket",
                "o",
                _payload(4 * CHUNK),
                cancel_event=event,
                on_progress=lambda confirmed, total: event.set(),
            )

        assert transport.successes == [1]
        assert remote.completions == []

    def test_cancel_interrupts_retry_backoff(self, make_service, remote):
        event = threading.Event()
        transport = FakeTransport(
            failures={1: [TransientRemoteError("HTTP 503", endpoint="part-upload")]},
            on_put=lambda part: threading.Timer(0.05, event.set).start(),
        )

        with pytest.raises(TransferCancelledError):
            make_service(transport=transport, sleep=None).upload(
                "bucket", "o", _payload(2 * CHUNK), cancel_event=event
            )

        assert len(transport.puts) == 1
        assert remote.completions == []

    def test_cancelled_before_start_requests_nothing(self, make_service, remote):
        event = threading.Event()
        event.set()

        with pytest.raises(TransferCancelledError):
            make_service().upload("bucket", "o", b"abc", cancel_event=event)

        assert remote.batch_requests == []

    def test_requires_bucket_and_key(self, make_service):
        with pytest.raises(InvalidConfigurationError):
            make_service().upload("", "o", b"abc")


class TestBackendSelection:
    def test_oss_backend(self):
        settings = Settings(OSS_ACCESS_TOKEN="token", OSS_BASE_URL="https://oss.test")

        service = ObjectUploadService._build_signed_url_service(settings)

        assert isinstance(service, OssSignedUrlService)

    def test_oss_backend_requires_token(self):
        with pytest.raises(StorageBackendNotConfiguredError, match="OSS_ACCESS_TOKEN"):
            ObjectUploadService._build_signed_url_service(Settings())

    def test_s3_backend(self):
        settings = Settings(
            STORAGE_BACKEND="s3",
            S3_ACCESS_KEY_ID="key",
            S3_SECRET_ACCESS_KEY="secret",
        )
        with patch.object(S3SignedUrlService, "_build_client", return_value=MagicMock()):
            service = ObjectUploadService._build_signed_url_service(settings)

        assert isinstance(service, S3SignedUrlService)

    def test_s3_backend_requires_credentials(self):
        with pytest.raises(StorageBackendNotConfiguredError):
            ObjectUploadService._build_signed_url_service(Settings(STORAGE_BACKEND="s3"))

    def test_constructor_builds_from_settings(self, registry):
        settings = Settings(OSS_ACCESS_TOKEN="token", UPLOAD_CONCURRENCY=2)

        service = ObjectUploadService(settings=settings, breakers=registry)

        assert service.options.concurrency == 2

    def test_resiliency_policy_follows_injected_settings(self):
        settings = Settings(
            OSS_ACCESS_TOKEN="token",
            RESILIENCY_RETRY_COUNT=7,
            RESILIENCY_BACKOFF_INTERVAL=0.5,
            RESILIENCY_CIRCUIT_BREAKER_INTERVAL=2.0,
        )

        service = ObjectUploadService(settings=settings)

        policy = service._breakers.policy
        assert (policy.retry_count, policy.backoff_interval) == (7, 0.5)
        assert policy.circuit_breaker_interval == 2.0
        assert service._breakers is ObjectUploadService(settings=settings)._breakers
