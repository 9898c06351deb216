from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from photopipe.domain.errors import DecodeError

# Pillow format name -> descriptor export format
_FORMAT_NAMES = {
    "JPEG": "jpeg",
    "PNG": "png",
    "WEBP": "webp",
    "GIF": "gif",
    "TIFF": "tiff",
    "AVIF": "avif",
}


@dataclass(frozen=True)
class ImageEntity:
    """An encoded image held by a session: an upload, a checkpoint or a pipeline output."""

    data: bytes = field(repr=False)
    mime_type: str
    format: str | None  # descriptor format name, None if the container is not exportable
    width: int
    height: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    original_filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(cls, data: bytes, original_filename: str | None = None) -> ImageEntity:
        """Read container format and dimensions from encoded bytes."""
        try:
            with Image.open(BytesIO(data)) as img:
                fmt = img.format
                width, height = img.size
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise DecodeError(f"Unsupported or corrupt image: {exc}") from exc
        mime = Image.MIME.get(fmt or "", "application/octet-stream")
        return cls(
            data=data,
            mime_type=mime,
            format=_FORMAT_NAMES.get(fmt or ""),
            width=width,
            height=height,
            original_filename=original_filename,
        )


def format_name(pil_format: str | None) -> str | None:
    return _FORMAT_NAMES.get(pil_format or "")
