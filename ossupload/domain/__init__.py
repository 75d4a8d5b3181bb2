from .chunk_planner import MAX_PARTS, MIN_CHUNK_SIZE, ChunkPlanner, plan_chunks
from .models import (
    Chunk,
    CompletionRequest,
    ObjectDescriptor,
    PartRange,
    PartStatus,
    PartUploadResult,
    SignedPartBatch,
)

__all__ = [
    "ChunkPlanner",
    "plan_chunks",
    "MIN_CHUNK_SIZE",
    "MAX_PARTS",
    "Chunk",
    "CompletionRequest",
    "ObjectDescriptor",
    "PartRange",
    "PartStatus",
    "PartUploadResult",
    "SignedPartBatch",
]
