#!/usr/bin/env python3
"""Upload a local file through signed part URLs.

Usage:
  .venv/bin/python scripts/upload_object.py my-bucket reports/2024.csv ./2024.csv
  .venv/bin/python scripts/upload_object.py my-bucket big.bin ./big.bin \
      --concurrency 4 --metadata '{"owner": "ops"}'

Backend, credentials and resiliency settings are read from the environment
(or a local .env file). Set METRICS_PORT to expose Prometheus metrics while
the upload runs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, replace

from prometheus_client import start_http_server

from ossupload.common.config import get_settings
from ossupload.common.errors import UploadError
from ossupload.common.logging import setup_logging
from ossupload.services import ObjectUploadService, TransferOptions

logger = logging.getLogger("ossupload.cli")


def _parse_metadata(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"--metadata is not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise argparse.ArgumentTypeError("--metadata must be a JSON object")
    return value


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Upload a file in signed parts")
    parser.add_argument("bucket", help="Target bucket")
    parser.add_argument("object_key", help="Object key in the bucket")
    parser.add_argument("path", help="Local file to upload")
    parser.add_argument("--metadata", default=None, help="User metadata as a JSON object")
    parser.add_argument("--content-type", default=None, help="MIME type of the object")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Parts uploaded in parallel (default: UPLOAD_CONCURRENCY)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Part size in bytes (default: UPLOAD_CHUNK_SIZE_BYTES)",
    )
    args = parser.parse_args(argv)

    try:
        metadata = _parse_metadata(args.metadata)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))

    try:
        settings = get_settings()
        options = TransferOptions.from_settings(settings)
        if args.concurrency is not None:
            options = replace(options, concurrency=args.concurrency)
        if args.chunk_size is not None:
            options = replace(options, chunk_size=args.chunk_size)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    setup_logging(settings.LOG_LEVEL)

    if settings.METRICS_PORT:
        start_http_server(settings.METRICS_PORT)
        logger.info("Serving metrics on port %d", settings.METRICS_PORT)

    def report(confirmed: int, total: int) -> None:
        logger.info("Uploaded part %d/%d", confirmed, total)

    try:
        service = ObjectUploadService(settings=settings, options=options)
        descriptor = service.upload_file(
            args.bucket,
            args.object_key,
            args.path,
            metadata=metadata,
            content_type=args.content_type,
            on_progress=report,
        )
    except (UploadError, OSError) as exc:
        logger.error("Upload failed: %s", exc)
        return 1

    print(json.dumps(asdict(descriptor), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
