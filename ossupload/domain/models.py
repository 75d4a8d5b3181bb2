"""Value objects exchanged between the upload pipeline components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class PartRange:
    """A planned part: 1-based index and the byte range ``[start, end)``."""

    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class Chunk:
    """A part's byte range together with its payload."""

    index: int
    start: int
    end: int
    payload: bytes = field(repr=False)

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class SignedPartBatch:
    """Signed URLs for consecutive parts starting at ``first_part``."""

    urls: tuple[str, ...] = field(repr=False)
    first_part: int
    expires_at: float
    generation: int


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """Finalization payload; ``metadata`` is forwarded uninterpreted."""

    upload_key: str
    metadata: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ObjectDescriptor:
    """Finished object as reported by the remote service."""

    bucket: str
    object_key: str
    object_id: str
    size: int
    content_type: str | None = None
    location: str | None = None
    sha1: str | None = None
    etag: str | None = None


class PartStatus(str, Enum):
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class PartUploadResult:
    part_index: int
    status: PartStatus
    etag: str | None = None
