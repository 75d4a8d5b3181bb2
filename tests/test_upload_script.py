from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from ossupload.common import config
from ossupload.common.config import Settings
from ossupload.common.errors import TransientRemoteError
from ossupload.domain.models import ObjectDescriptor
from scripts import upload_object


@pytest.fixture()
def service_cls(monkeypatch):
    service_cls = MagicMock()
    monkeypatch.setattr(upload_object, "ObjectUploadService", service_cls)
    monkeypatch.setattr(upload_object, "get_settings", lambda: Settings(OSS_ACCESS_TOKEN="t"))
    monkeypatch.setattr(upload_object, "setup_logging", lambda level: None)
    return service_cls


def test_uploads_file_and_prints_descriptor(service_cls, capsys, tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"abc")
    service_cls.return_value.upload_file.return_value = ObjectDescriptor(
        bucket="b", object_key="k", object_id="urn:b/k", size=3
    )

    code = upload_object.main(
        ["b", "k", str(path), "--metadata", '{"owner": "ops"}', "--concurrency", "3"]
    )

    assert code == 0
    options = service_cls.call_args.kwargs["options"]
    assert options.concurrency == 3
    call = service_cls.return_value.upload_file.call_args
    assert call.args == ("b", "k", str(path))
    assert call.kwargs["metadata"] == {"owner": "ops"}
    assert json.loads(capsys.readouterr().out)["size"] == 3


def test_returns_error_code_on_failure(service_cls, tmp_path):
    service_cls.return_value.upload_file.side_effect = TransientRemoteError(
        "HTTP 503", endpoint="part-upload"
    )

    assert upload_object.main(["b", "k", str(tmp_path / "missing.bin")]) == 1


def test_rejects_metadata_that_is_not_an_object(service_cls):
    with pytest.raises(SystemExit):
        upload_object.main(["b", "k", "f", "--metadata", "[1, 2]"])

    service_cls.assert_not_called()


def test_rejects_invalid_concurrency_without_traceback(service_cls):
    assert upload_object.main(["b", "k", "f", "--concurrency", "0"]) == 1

    service_cls.assert_not_called()


def test_reports_invalid_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "ENV_FILE", tmp_path / ".env")
    service_cls = MagicMock()
    monkeypatch.setattr(upload_object, "ObjectUploadService", service_cls)
    monkeypatch.setenv("STORAGE_BACKEND", "ftp")
    monkeypatch.setattr(upload_object, "setup_logging", lambda level: None)

    assert upload_object.main(["b", "k", "f"]) == 1

    service_cls.assert_not_called()
