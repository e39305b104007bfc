"""Pydantic schemas for media uploads.

Uploaded blobs are stored under ``upload_dir/<uuid><ext>``; a chat message
of kind ``image`` or ``video`` carries the returned ``mediaRef`` as its body.
"""
import time
import uuid
from enum import Enum

from pydantic import BaseModel, Field


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class MediaRecord(BaseModel):
    """Metadata for one stored blob, as persisted in DuckDB."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Media ID")
    filename: str = Field(..., description="Original filename")
    storedFilename: str = Field(..., description="Filename on disk (UUID-based)")
    kind: MediaKind = Field(..., description="image or video")
    contentType: str = Field(..., description="MIME type")
    sizeBytes: int = Field(..., description="Blob size in bytes")
    uploadedBy: str = Field(..., description="User ID of the uploader")
    uploadedAt: float = Field(default_factory=time.time, description="Upload timestamp")

    @property
    def media_ref(self) -> str:
        return f"/media/{self.id}"


class MediaUploadResponse(BaseModel):
    """Response for POST /media/upload."""
    mediaRef: str = Field(..., description="Reference to use as the message body")
    kind: MediaKind
    mediaId: str
