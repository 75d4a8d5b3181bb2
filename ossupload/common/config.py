from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from ossupload.common.errors import InvalidConfigurationError

ENV_FILE = Path(".env")

MIB = 1024 * 1024
MAX_URL_EXPIRATION_MINUTES = 60
SUPPORTED_BACKENDS: tuple[str, ...] = ("oss", "s3")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass
class Settings:
    STORAGE_BACKEND: str = "oss"
    OSS_BASE_URL: str = "https://developer.api.autodesk.com"
    OSS_ACCESS_TOKEN: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str | None = None
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    UPLOAD_CHUNK_SIZE_BYTES: int = 5 * MIB
    UPLOAD_MAX_PARTS_PER_BATCH: int = 25
    UPLOAD_URL_EXPIRATION_MINUTES: int = 10
    UPLOAD_CONCURRENCY: int = 1
    HTTP_TIMEOUT_SECONDS: float = 60.0
    RESILIENCY_RETRY_COUNT: int = 3
    RESILIENCY_BACKOFF_INTERVAL: float = 10.0
    RESILIENCY_CIRCUIT_BREAKER_INTERVAL: float = 5.0
    LOG_LEVEL: str = "INFO"
    METRICS_PORT: int | None = None

    def __post_init__(self) -> None:
        backend = (self.STORAGE_BACKEND or "").strip().lower()
        if backend not in SUPPORTED_BACKENDS:
            raise InvalidConfigurationError(
                f"STORAGE_BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)}"
            )
        self.STORAGE_BACKEND = backend
        if not 1 <= self.UPLOAD_URL_EXPIRATION_MINUTES <= MAX_URL_EXPIRATION_MINUTES:
            raise InvalidConfigurationError(
                f"UPLOAD_URL_EXPIRATION_MINUTES must be between 1 and {MAX_URL_EXPIRATION_MINUTES}"
            )
        if self.HTTP_TIMEOUT_SECONDS <= 0:
            raise InvalidConfigurationError("HTTP_TIMEOUT_SECONDS must be positive")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_BACKEND=os.environ.get("STORAGE_BACKEND", cls.STORAGE_BACKEND),
            OSS_BASE_URL=os.environ.get("OSS_BASE_URL", cls.OSS_BASE_URL),
            OSS_ACCESS_TOKEN=os.environ.get("OSS_ACCESS_TOKEN"),
            S3_ENDPOINT_URL=os.environ.get("S3_ENDPOINT_URL"),
            S3_REGION=os.environ.get("S3_REGION"),
            S3_ACCESS_KEY_ID=os.environ.get("S3_ACCESS_KEY_ID"),
            S3_SECRET_ACCESS_KEY=os.environ.get("S3_SECRET_ACCESS_KEY"),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            UPLOAD_CHUNK_SIZE_BYTES=int(
                os.environ.get("UPLOAD_CHUNK_SIZE_BYTES", cls.UPLOAD_CHUNK_SIZE_BYTES)
            ),
            UPLOAD_MAX_PARTS_PER_BATCH=int(
                os.environ.get(
                    "UPLOAD_MAX_PARTS_PER_BATCH", cls.UPLOAD_MAX_PARTS_PER_BATCH
                )
            ),
            UPLOAD_URL_EXPIRATION_MINUTES=int(
                os.environ.get(
                    "UPLOAD_URL_EXPIRATION_MINUTES", cls.UPLOAD_URL_EXPIRATION_MINUTES
                )
            ),
            UPLOAD_CONCURRENCY=int(
                os.environ.get("UPLOAD_CONCURRENCY", cls.UPLOAD_CONCURRENCY)
            ),
            HTTP_TIMEOUT_SECONDS=float(
                os.environ.get("HTTP_TIMEOUT_SECONDS", cls.HTTP_TIMEOUT_SECONDS)
            ),
            RESILIENCY_RETRY_COUNT=int(
                os.environ.get("RESILIENCY_RETRY_COUNT", cls.RESILIENCY_RETRY_COUNT)
            ),
            RESILIENCY_BACKOFF_INTERVAL=float(
                os.environ.get(
                    "RESILIENCY_BACKOFF_INTERVAL", cls.RESILIENCY_BACKOFF_INTERVAL
                )
            ),
            RESILIENCY_CIRCUIT_BREAKER_INTERVAL=float(
                os.environ.get(
                    "RESILIENCY_CIRCUIT_BREAKER_INTERVAL",
                    cls.RESILIENCY_CIRCUIT_BREAKER_INTERVAL,
                )
            ),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
            METRICS_PORT=_as_optional_int(os.environ.get("METRICS_PORT")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
