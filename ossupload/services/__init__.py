from .chunk_uploader import ChunkUploader
from .completion import CompletionCoordinator
from .session_manager import UploadSession, UploadSessionManager
from .upload_service import ObjectUploadService, TransferOptions

__all__ = [
    "ChunkUploader",
    "CompletionCoordinator",
    "ObjectUploadService",
    "TransferOptions",
    "UploadSession",
    "UploadSessionManager",
]
