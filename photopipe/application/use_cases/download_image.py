from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePath

from photopipe.domain.services.edit_session import EditSession
from photopipe.domain.services.encoding import (
    EXTENSIONS,
    MIME_TYPES,
    QUALITY_FORMATS,
    TARGET_SIZE_FORMATS,
    encode_image,
    prepare_for_format,
)
from photopipe.domain.services.pipeline_executor import decode_image, resolve_format
from photopipe.domain.services.target_size_encoder import encode_to_target

logger = logging.getLogger(__name__)

FILENAME_SUFFIX = "-pp-edited"


@dataclass(frozen=True)
class DownloadFile:
    data: bytes = field(repr=False)
    filename: str
    mime_type: str
    format: str
    quality: int | None
    reencoded: bool

    @property
    def size(self) -> int:
        return len(self.data)


def download_filename(original_filename: str | None, fmt: str) -> str:
    stem = PurePath(original_filename).stem if original_filename else ""
    return f"{stem or 'image'}{FILENAME_SUFFIX}.{EXTENSIONS[fmt]}"


@dataclass
class DownloadImageUseCase:
    def execute(self, session: EditSession, target_kb: int | None = None) -> DownloadFile:
        """
        Produce the file a user downloads for the session's pipeline output.

        The bytes are reused as-is when they are already in the resolved export
        format. Otherwise they are re-encoded, through the target-size search
        when a target is set for a quality format.

        Raises NothingToDownloadError while edits are pending without a
        processed image (before the first render, or after a failed one).
        """
        image = session.output_image()
        edits = session.edits
        fmt = resolve_format(edits, image.format)
        target = target_kb if target_kb is not None else edits.download_target_kb
        filename = download_filename(session.original_image.original_filename, fmt)

        if target and target > 0 and fmt in TARGET_SIZE_FORMATS:
            raster, _ = decode_image(image.data)
            encoded = encode_to_target(raster, target, fmt, progressive=edits.progressive, colorspace=edits.to_colorspace)
            logger.info("Download for session %s re-encoded to %d bytes at q=%d", session.id, encoded.size_bytes, encoded.quality)
            return DownloadFile(encoded.data, filename, MIME_TYPES[fmt], fmt, encoded.quality, True)

        quality = edits.quality if fmt in QUALITY_FORMATS else None
        if image.format == fmt:
            return DownloadFile(image.data, filename, MIME_TYPES[fmt], fmt, quality, False)

        raster, _ = decode_image(image.data)
        data = encode_image(prepare_for_format(raster, fmt, edits.to_colorspace), fmt, quality, edits.progressive)
        return DownloadFile(data, filename, MIME_TYPES[fmt], fmt, quality, True)
