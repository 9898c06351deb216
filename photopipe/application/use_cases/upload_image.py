from __future__ import annotations

import logging
from dataclasses import dataclass

from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.services.edit_session import EditSession
from photopipe.infrastructure.storage.session_repository import SessionRepository

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/avif",
    "image/tiff",
)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class UploadRejectedError(ValueError):
    """User-facing rejection raised before any bytes reach the pipeline."""


def validate_upload(data: bytes, content_type: str | None, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream" and declared not in ALLOWED_MIME_TYPES:
        raise UploadRejectedError(
            f"Unsupported file type {declared}. Allowed: JPEG, PNG, WebP, GIF, AVIF, TIFF"
        )
    if not data:
        raise UploadRejectedError("The uploaded file is empty")
    if len(data) > max_bytes:
        raise UploadRejectedError(f"File is too large. Maximum size is {max_bytes // (1024 * 1024)} MB")


def inspect_upload(data: bytes, filename: str | None = None) -> ImageEntity:
    """Identify the decoded container and hold it to the same allow-list as the declared type.

    Raises DecodeError for bytes Pillow cannot identify and UploadRejectedError
    for a real image in a container outside the allow-list (BMP, ICO, ...).
    """
    upload = ImageEntity.from_bytes(data, original_filename=filename)
    if upload.mime_type not in ALLOWED_MIME_TYPES:
        raise UploadRejectedError(
            f"Unsupported image format {upload.mime_type}. Allowed: JPEG, PNG, WebP, GIF, AVIF, TIFF"
        )
    return upload


@dataclass
class UploadImageUseCase:
    sessions: SessionRepository
    max_bytes: int = MAX_UPLOAD_BYTES

    def execute(self, data: bytes, filename: str | None, content_type: str | None) -> EditSession:
        """
        Validate an upload and start an editing session on it.

        The upload becomes both the original and the base image, with a single
        "Initial image" history entry. Raises UploadRejectedError for type or
        size violations and DecodeError for bytes that are not an image.
        """
        validate_upload(data, content_type, self.max_bytes)
        upload = inspect_upload(data, filename)
        session = self.sessions.create(upload)
        logger.info(
            "Session %s started: %s %dx%d, %d bytes",
            session.id,
            upload.mime_type,
            upload.width,
            upload.height,
            upload.size,
        )
        return session
