"""FastAPI router for media upload endpoints."""
import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse

from groupchat.identity.dependencies import get_current_user
from groupchat.identity.schemas import User

from .schemas import MediaUploadResponse
from .service import MediaStorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


def media_service() -> MediaStorageService:
    return MediaStorageService.get_instance()


@router.post("/upload", response_model=MediaUploadResponse)
async def upload_media(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    service: MediaStorageService = Depends(media_service),
) -> MediaUploadResponse:
    """Upload an image or video.

    The returned ``mediaRef`` is what a client sends as the body of an
    ``image`` or ``video`` message.

    Raises:
        Malformed (422): Unsupported type, empty or oversize file.
    """
    content = await file.read()
    record = service.save(
        filename=file.filename or "unnamed",
        content=content,
        content_type=file.content_type or "application/octet-stream",
        uploaded_by=user.id,
    )
    return MediaUploadResponse(mediaRef=record.media_ref, kind=record.kind, mediaId=record.id)


@router.get("/{media_id}")
async def get_media(
    media_id: str,
    service: MediaStorageService = Depends(media_service),
) -> FileResponse:
    record = service.get(media_id)
    return FileResponse(
        path=service.path_for(record),
        filename=record.filename,
        media_type=record.contentType,
    )
