from __future__ import annotations

import logging
from dataclasses import dataclass

from PIL import Image

from photopipe.domain.errors import EncodeError, ValidationError
from photopipe.domain.services.encoding import TARGET_SIZE_FORMATS, encode_image, prepare_for_format

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetEncoding:
    data: bytes
    quality: int
    size_bytes: int
    met_target: bool


def encode_to_target(
    raster: Image.Image,
    target_kb: int,
    fmt: str,
    *,
    start_quality: int = 90,
    step: int = 10,
    floor: int = 10,
    progressive: bool = False,
    colorspace: str = "srgb",
) -> TargetEncoding:
    """
    Re-encode `raster` at decreasing quality until it fits in `target_kb`.

    Starts at `start_quality` and steps down by `step` until the encoded size is
    at or below the target or `floor` is reached. The first result under the
    target is returned. If none fits, the smallest result seen is returned with
    `met_target=False`. At most (start_quality - floor) / step + 1 encodes run.
    """
    if fmt not in TARGET_SIZE_FORMATS:
        raise EncodeError(f"Target size encoding needs a quality format, got {fmt}")
    if target_kb <= 0:
        raise ValidationError("must be positive", "downloadTargetKB")
    if step <= 0 or not 1 <= floor <= start_quality <= 100:
        raise ValidationError("quality search bounds are inconsistent", "quality")

    target_bytes = target_kb * 1024
    prepared = prepare_for_format(raster, fmt, colorspace)

    # non-empty: the bounds check above guarantees floor <= start_quality
    misses: list[TargetEncoding] = []
    for quality in range(start_quality, floor - 1, -step):
        data = encode_image(prepared, fmt, quality, progressive)
        size = len(data)
        logger.debug("target-size pass: %s q=%d -> %d bytes (target %d)", fmt, quality, size, target_bytes)
        if size <= target_bytes:
            return TargetEncoding(data=data, quality=quality, size_bytes=size, met_target=True)
        misses.append(TargetEncoding(data=data, quality=quality, size_bytes=size, met_target=False))

    best = min(misses, key=lambda attempt: attempt.size_bytes)
    logger.info("Target of %d KB not reachable for %s, smallest is %d bytes", target_kb, fmt, best.size_bytes)
    return best
