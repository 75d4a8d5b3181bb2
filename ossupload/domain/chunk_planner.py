"""Partitioning of a byte stream into ordered, size-bounded parts."""

from __future__ import annotations

from ossupload.common.errors import InvalidConfigurationError
from ossupload.domain.models import PartRange

# The storage protocol rejects smaller parts, except for the last one.
MIN_CHUNK_SIZE = 5 * 1024 * 1024
# Maximum part number accepted by the storage protocol
MAX_PARTS = 10000


def plan_chunks(file_size: int, chunk_size: int) -> list[PartRange]:
    """Split ``[0, file_size)`` into consecutive ranges of ``chunk_size`` bytes.

    An empty payload still yields one zero-length part so that every transfer
    goes through the same request/upload/complete sequence.

    Raises:
        InvalidConfigurationError: If ``chunk_size`` is not positive or
            ``file_size`` is negative.
    """
    if chunk_size <= 0:
        raise InvalidConfigurationError("chunk_size must be positive")
    if file_size < 0:
        raise InvalidConfigurationError("file_size cannot be negative")
    if file_size == 0:
        return [PartRange(index=1, start=0, end=0)]

    number_of_parts = -(-file_size // chunk_size)
    return [
        PartRange(
            index=index + 1,
            start=index * chunk_size,
            end=min((index + 1) * chunk_size, file_size),
        )
        for index in range(number_of_parts)
    ]


class ChunkPlanner:
    """Plans transfers for a configured chunk size."""

    def __init__(
        self,
        chunk_size: int,
        *,
        minimum_chunk_size: int = MIN_CHUNK_SIZE,
        max_parts: int = MAX_PARTS,
    ) -> None:
        if chunk_size <= 0:
            raise InvalidConfigurationError("chunk_size must be positive")
        if chunk_size < minimum_chunk_size:
            raise InvalidConfigurationError(
                f"chunk_size must be at least {minimum_chunk_size} bytes"
            )
        self.chunk_size = chunk_size
        self.max_parts = max_parts

    def plan(self, file_size: int) -> list[PartRange]:
        parts = plan_chunks(file_size, self.chunk_size)
        if len(parts) > self.max_parts:
            raise InvalidConfigurationError(
                f"{file_size} bytes need {len(parts)} parts of {self.chunk_size} bytes; "
                f"at most {self.max_parts} are allowed"
            )
        return parts
