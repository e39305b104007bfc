"""Media storage service.

Blobs live in a flat upload directory; metadata is tracked in DuckDB.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import duckdb

from groupchat.config import MediaSettings, get_config
from groupchat.errors import Malformed, NotFound

from .schemas import MediaKind, MediaRecord

logger = logging.getLogger(__name__)


class MediaStorageService:
    """Stores uploaded images and videos."""

    _instance: Optional["MediaStorageService"] = None

    def __init__(
        self,
        upload_dir: str = "uploads",
        db_path: str = "media_metadata.duckdb",
        max_size_bytes: int = 50 * 1024 * 1024,
        image_types: Iterable[str] = ("image/jpeg", "image/png", "image/gif", "image/webp"),
        video_types: Iterable[str] = ("video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"),
    ) -> None:
        self._upload_dir = Path(upload_dir)
        self._db_path = db_path
        self._max_size_bytes = max_size_bytes
        self._image_types = {t.lower() for t in image_types}
        self._video_types = {t.lower() for t in video_types}

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._upload_dir.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    @classmethod
    def from_settings(cls, settings: MediaSettings) -> "MediaStorageService":
        return cls(
            upload_dir=settings.upload_dir,
            db_path=settings.db_path,
            max_size_bytes=settings.max_size_bytes,
            image_types=settings.image_types,
            video_types=settings.video_types,
        )

    @classmethod
    def get_instance(cls) -> "MediaStorageService":
        """Get or create the process-wide instance from configuration."""
        if cls._instance is None:
            cls._instance = cls.from_settings(get_config().media)
        return cls._instance

    @classmethod
    def set_instance(cls, service: "MediaStorageService") -> None:
        cls.reset_instance()
        cls._instance = service

    @classmethod
    def reset_instance(cls) -> None:
        """Close and drop the process-wide instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS media_metadata (
                id VARCHAR PRIMARY KEY,
                filename VARCHAR NOT NULL,
                stored_filename VARCHAR NOT NULL,
                kind VARCHAR NOT NULL,
                content_type VARCHAR NOT NULL,
                size_bytes BIGINT NOT NULL,
                uploaded_by VARCHAR NOT NULL,
                uploaded_at TIMESTAMP NOT NULL
            )
        """)

    def classify(self, content_type: str) -> MediaKind:
        """Map a MIME type to a media kind.

        Raises:
            Malformed: The type is neither an allowed image nor video type.
        """
        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type in self._image_types:
            return MediaKind.IMAGE
        if content_type in self._video_types:
            return MediaKind.VIDEO
        raise Malformed(f"Unsupported media type: {content_type or 'unknown'}")

    def save(self, filename: str, content: bytes, content_type: str, uploaded_by: str) -> MediaRecord:
        """Write a blob to disk and record its metadata.

        Raises:
            Malformed: Empty, oversize or unsupported upload.
        """
        kind = self.classify(content_type)
        size_bytes = len(content)
        if size_bytes == 0:
            raise Malformed("Empty upload")
        if size_bytes > self._max_size_bytes:
            raise Malformed(
                f"File size ({size_bytes} bytes) exceeds limit ({self._max_size_bytes} bytes)"
            )

        record = MediaRecord(
            filename=filename or "unnamed",
            storedFilename="",
            kind=kind,
            contentType=content_type.split(";")[0].strip().lower(),
            sizeBytes=size_bytes,
            uploadedBy=uploaded_by,
        )
        record.storedFilename = f"{record.id}{Path(record.filename).suffix.lower()}"
        (self._upload_dir / record.storedFilename).write_bytes(content)

        self._get_connection().execute(
            """
            INSERT INTO media_metadata
            (id, filename, stored_filename, kind, content_type, size_bytes, uploaded_by, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.id,
                record.filename,
                record.storedFilename,
                record.kind.value,
                record.contentType,
                record.sizeBytes,
                record.uploadedBy,
                datetime.fromtimestamp(record.uploadedAt),
            ],
        )
        logger.info("[Media] Stored %s %s (%d bytes) from %s", kind.value, record.id, size_bytes, uploaded_by)
        return record

    def get(self, media_id: str) -> MediaRecord:
        row = self._get_connection().execute(
            """
            SELECT id, filename, stored_filename, kind, content_type, size_bytes,
                   uploaded_by, uploaded_at
            FROM media_metadata
            WHERE id = ?
            """,
            [media_id],
        ).fetchone()
        if not row:
            raise NotFound(f"Media {media_id!r} not found")
        return MediaRecord(
            id=row[0],
            filename=row[1],
            storedFilename=row[2],
            kind=MediaKind(row[3]),
            contentType=row[4],
            sizeBytes=row[5],
            uploadedBy=row[6],
            uploadedAt=row[7].timestamp() if isinstance(row[7], datetime) else row[7],
        )

    def path_for(self, record: MediaRecord) -> Path:
        """Location of a record's blob on disk.

        Raises:
            NotFound: The metadata exists but the blob is gone.
        """
        path = self._upload_dir / record.storedFilename
        if not path.exists():
            raise NotFound(f"Media {record.id!r} missing from storage")
        return path
