"""Media storage: image/video blobs on disk, metadata in DuckDB."""
from .schemas import MediaKind, MediaRecord, MediaUploadResponse
from .service import MediaStorageService

__all__ = ["MediaKind", "MediaRecord", "MediaUploadResponse", "MediaStorageService"]
