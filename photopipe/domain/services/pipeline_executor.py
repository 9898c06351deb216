from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable
from urllib.parse import unquote_to_bytes

import numpy as np
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from photopipe.domain.entities.image import format_name
from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.errors import CompositeError, DecodeError, ValidationError
from photopipe.domain.services import geometry
from photopipe.domain.services.encoding import (
    MIME_TYPES,
    QUALITY_FORMATS,
    TARGET_SIZE_FORMATS,
    encode_image,
    has_alpha,
    prepare_for_format,
)
from photopipe.domain.services.processing_service import ProcessingService
from photopipe.domain.services.target_size_encoder import encode_to_target

logger = logging.getLogger(__name__)

OverlayLoader = Callable[[str], bytes]

# Pixel offset of an overlay of size (w, h) on a base of size (W, H)
_GRAVITY = {
    "north": lambda dw, dh: (dw // 2, 0),
    "northeast": lambda dw, dh: (dw, 0),
    "east": lambda dw, dh: (dw, dh // 2),
    "southeast": lambda dw, dh: (dw, dh),
    "south": lambda dw, dh: (dw // 2, dh),
    "southwest": lambda dw, dh: (0, dh),
    "west": lambda dw, dh: (0, dh // 2),
    "northwest": lambda dw, dh: (0, 0),
    "center": lambda dw, dh: (dw // 2, dh // 2),
    "centre": lambda dw, dh: (dw // 2, dh // 2),
}


@dataclass(frozen=True)
class ExecutionResult:
    data: bytes = field(repr=False)
    format: str
    mime_type: str
    width: int
    height: int
    size_bytes: int
    original_size_bytes: int
    quality_used: int | None
    processing_time_ms: float
    skipped_steps: tuple[str, ...] = ()


def resolve_format(edits: ImageEdits, source_format: str | None) -> str:
    """
    Pick the container for the output.

    - unset + non-zero rotation -> png (lossless, rotated edges compress badly)
    - unset otherwise, or "original" -> the source's container, webp if unknown
    """
    fmt = edits.export_format
    if fmt is None:
        if edits.rotation % 360 != 0:
            return "png"
        fmt = "original"
    if fmt == "original":
        return source_format or "webp"
    return fmt


def validate_executable(edits: ImageEdits) -> None:
    """Checks that depend on executor capabilities rather than descriptor ranges."""
    if edits.rotation % 90 != 0:
        raise ValidationError("only multiples of 90 degrees are supported", "rotation")


class PipelineExecutor:
    """
    Runs an `ImageEdits` descriptor against encoded source bytes.

    The executor is stateless: every call decodes, transforms and encodes from
    scratch, so concurrent calls with different inputs are independent.
    Geometry runs on Pillow images, colour work on float32 NumPy rasters.
    """

    def __init__(self, overlay_loader: OverlayLoader | None = None, processing: ProcessingService | None = None) -> None:
        self.overlay_loader = overlay_loader
        self.processing = processing or ProcessingService()

    def execute(self, source: bytes, edits: ImageEdits) -> ExecutionResult:
        started = time.perf_counter()
        validate_executable(edits)
        skipped: list[str] = []

        # 1. decode + auto-orient
        img, source_format = decode_image(source, edits.auto_orient)
        output_format = resolve_format(edits, source_format)

        # rotation: lossless quarter turns, before flips
        img = geometry.rotate_quarter(img, geometry.quarter_turns(edits.rotation))

        # 2. flips
        if edits.flip_horizontal:
            img = ImageOps.mirror(img)
        if edits.flip_vertical:
            img = ImageOps.flip(img)

        # 3. affine
        if edits.affine.enabled:
            img = geometry.affine(img, edits.affine)

        # 4. crop against current dimensions
        if edits.crop.enabled:
            box = geometry.crop_box(img.width, img.height, edits.crop)
            if box is None:
                self._skip(skipped, "crop", "crop is empty or exceeds the image bounds")
            elif box != (0, 0, img.width, img.height):
                img = img.crop(box)

        # 5. extend
        if edits.extend.enabled:
            ext = edits.extend
            img = geometry.extend(img, ext.top, ext.bottom, ext.left, ext.right, ext.background)

        # 6. trim
        if edits.trim.enabled:
            colour, _ = _split(img)
            box = self.processing.trim_box(colour, edits.trim.threshold)
            if box is None:
                self._skip(skipped, "trim", "image is uniform")
            else:
                img = img.crop(box)

        # 7. resize
        if edits.width > 0 or edits.height > 0:
            img = self._resize(img, edits, skipped)

        # 8. colorspace; the output colorspace is applied at encode time
        if edits.pipeline_colorspace == "grey16":
            img = img.convert("LA" if has_alpha(img) else "L")

        img = self._colour_steps(img, edits)

        # 19. blur
        if edits.blur > 0:
            img = img.filter(ImageFilter.GaussianBlur(radius=edits.blur))

        # 20. median, odd window
        if edits.median > 0:
            size = edits.median if edits.median % 2 == 1 else edits.median + 1
            img = img.filter(ImageFilter.MedianFilter(size=size))

        # 21-22. sharpen, convolve
        if edits.sharpen.enabled or edits.convolve.enabled:
            colour, alpha = _split(img)
            if edits.sharpen.enabled:
                s = edits.sharpen
                colour = self.processing.sharpen(colour, s.sigma, s.m1, s.m2, s.x1, s.y2, s.y3)
            if edits.convolve.enabled:
                k = edits.convolve
                colour = self.processing.convolve(colour, k.kernel, k.width, k.height, k.scale, k.offset)
            img = _merge(colour, alpha)

        # 23. composite, never fatal
        if edits.composite.enabled and edits.composite.input:
            try:
                img = self._composite(img, edits)
            except CompositeError as exc:
                self._skip(skipped, "composite", exc.message)

        # 24. encode
        data, quality_used = self._encode(img, output_format, edits)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug(
            "pipeline: %d ops -> %s %dx%d, %d bytes in %.1f ms",
            len(edits.active_operations()),
            output_format,
            img.width,
            img.height,
            len(data),
            elapsed_ms,
        )
        return ExecutionResult(
            data=data,
            format=output_format,
            mime_type=MIME_TYPES[output_format],
            width=img.width,
            height=img.height,
            size_bytes=len(data),
            original_size_bytes=len(source),
            quality_used=quality_used,
            processing_time_ms=round(elapsed_ms, 2),
            skipped_steps=tuple(skipped),
        )

    # ------------------------------------------------------------------ steps

    def _resize(self, img: Image.Image, edits: ImageEdits, skipped: list[str]) -> Image.Image:
        target = geometry.resize_target(img.width, img.height, edits)
        tw, th = target
        if edits.without_enlargement and (tw > img.width or th > img.height):
            self._skip(skipped, "resize", "would enlarge")
            return img
        if edits.without_reduction and (tw < img.width or th < img.height):
            self._skip(skipped, "resize", "would reduce")
            return img
        fit = edits.resize_fit if edits.aspect_ratio_locked else "fill"
        if target == img.size:
            return img
        return geometry.resize(img, target, fit, edits.resize_position, edits.resize_kernel)

    def _colour_steps(self, img: Image.Image, edits: ImageEdits) -> Image.Image:
        """Steps 9-18 on the float raster. Skips the round trip when none is active."""
        scalars = (edits.brightness, edits.contrast, edits.saturation, edits.hue)
        active = (
            edits.gamma != 1.0
            or edits.normalize
            or edits.clahe.enabled
            or edits.linear.enabled
            or edits.modulate.enabled
            or any(scalars)
            or edits.tint.enabled
            or edits.threshold.enabled
            or edits.negate
            or edits.grayscale
        )
        if not active:
            return img

        p = self.processing
        colour, alpha = _split(img)
        # 9. gamma
        if edits.gamma != 1.0:
            colour = p.adjust_gamma(colour, edits.gamma)
        # 10. normalize
        if edits.normalize:
            colour = p.normalize(colour)
        # 11. clahe
        if edits.clahe.enabled:
            c = edits.clahe
            colour = p.clahe(colour, c.width, c.height, c.max_slope)
        # 12. linear
        if edits.linear.enabled:
            colour = p.linear(colour, edits.linear.multiplier, edits.linear.offset)
        # 13. modulate supersedes 14. legacy scalars
        if edits.modulate.enabled:
            m = edits.modulate
            colour = p.modulate(colour, m.brightness, m.saturation, m.hue, m.lightness)
        elif any(scalars):
            if edits.brightness:
                colour = p.adjust_brightness(colour, 1.0 + edits.brightness / 100.0)
            if edits.contrast:
                colour = p.adjust_contrast(colour, 1.0 + edits.contrast / 100.0)
            if edits.saturation or edits.hue:
                colour = p.modulate(colour, saturation=1.0 + edits.saturation / 100.0, hue=edits.hue)
        # 15. tint
        if edits.tint.enabled:
            colour = p.tint(colour, edits.tint.r, edits.tint.g, edits.tint.b)
        # 16. threshold
        if edits.threshold.enabled:
            colour = p.threshold(colour, edits.threshold.value, edits.threshold.grayscale)
        # 17. negate, alpha untouched
        if edits.negate:
            colour = p.invert_color(colour)
        # 18. grayscale
        if edits.grayscale:
            colour = p.grayscale_luminosity(colour)
        return _merge(colour, alpha)

    def _composite(self, img: Image.Image, edits: ImageEdits) -> Image.Image:
        options = edits.composite
        overlay = _decode_overlay(self._load_overlay(options.input))
        if options.left or options.top:
            left, top = options.left, options.top
        else:
            left, top = _GRAVITY[options.gravity](img.width - overlay.width, img.height - overlay.height)

        colour, alpha = _split(img)
        base_alpha = alpha if alpha is not None else np.ones(colour.shape[:2], dtype=np.float32)
        over = np.asarray(overlay, dtype=np.float32) / 255.0
        rgb, out_alpha = self.processing.composite(
            self.processing.to_rgb(colour),
            base_alpha,
            over[..., :3],
            over[..., 3],
            left,
            top,
            options.blend,
        )
        if alpha is None and bool(np.all(out_alpha >= 1.0 - 1e-6)):
            out_alpha = None
        return _merge(rgb, out_alpha)

    def _load_overlay(self, reference: str) -> bytes:
        if reference.startswith("data:"):
            header, sep, payload = reference.partition(",")
            if not sep:
                raise CompositeError("Malformed data URL for overlay")
            if header.endswith(";base64"):
                try:
                    return base64.b64decode(payload, validate=True)
                except (binascii.Error, ValueError) as exc:
                    raise CompositeError(f"Overlay data URL is not valid base64: {exc}") from exc
            return unquote_to_bytes(payload)
        if reference.startswith(("http://", "https://")):
            if self.overlay_loader is None:
                raise CompositeError("Remote overlays are not enabled")
            return self.overlay_loader(reference)
        raise CompositeError("Overlay input must be a data URL or an http(s) URL")

    def _encode(self, img: Image.Image, fmt: str, edits: ImageEdits) -> tuple[bytes, int | None]:
        if edits.download_target_kb > 0 and fmt in TARGET_SIZE_FORMATS:
            result = encode_to_target(
                img,
                edits.download_target_kb,
                fmt,
                progressive=edits.progressive,
                colorspace=edits.to_colorspace,
            )
            return result.data, result.quality
        prepared = prepare_for_format(img, fmt, edits.to_colorspace)
        quality = edits.quality if fmt in QUALITY_FORMATS else None
        return encode_image(prepared, fmt, quality, edits.progressive), quality

    @staticmethod
    def _skip(skipped: list[str], step: str, reason: str) -> None:
        logger.warning("Skipping %s: %s", step, reason)
        skipped.append(step)


# ---------------------------------------------------------------------- helpers


def decode_image(source: bytes, auto_orient: bool = False) -> tuple[Image.Image, str | None]:
    try:
        img = Image.open(BytesIO(source))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Unsupported or corrupt image: {exc}") from exc
    source_format = format_name(img.format)
    if auto_orient:
        img = ImageOps.exif_transpose(img)
    return _working_mode(img), source_format


def _decode_overlay(data: bytes) -> Image.Image:
    try:
        overlay = Image.open(BytesIO(data))
        overlay.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise CompositeError(f"Overlay is not a decodable image: {exc}") from exc
    return overlay.convert("RGBA")


def _working_mode(img: Image.Image) -> Image.Image:
    """Normalize to one of L, LA, RGB, RGBA."""
    if img.mode in ("L", "LA", "RGB", "RGBA"):
        return img
    if img.mode in ("I;16", "I;16B", "I;16L", "I"):
        arr = np.asarray(img, dtype=np.float32)
        peak = 65535.0 if arr.max(initial=0) > 255 else 255.0
        return Image.fromarray(np.clip(arr / peak * 255.0 + 0.5, 0, 255).astype(np.uint8))
    if has_alpha(img):
        return img.convert("RGBA")
    if img.mode == "1":
        return img.convert("L")
    return img.convert("RGB")


def _split(img: Image.Image) -> tuple[np.ndarray, np.ndarray | None]:
    """Pillow image -> (colour, alpha) float32 arrays in [0, 1]."""
    arr = np.asarray(img, dtype=np.float32) / 255.0
    if img.mode == "L":
        return arr, None
    if img.mode == "LA":
        return arr[..., 0], arr[..., 1]
    if img.mode == "RGBA":
        return arr[..., :3], arr[..., 3]
    return arr[..., :3], None


def _merge(colour: np.ndarray, alpha: np.ndarray | None) -> Image.Image:
    """(colour, alpha) float arrays -> 8-bit Pillow image."""
    channels = colour if colour.ndim == 3 else colour[..., None]
    if alpha is not None:
        channels = np.concatenate([channels, alpha[..., None]], axis=2)
    pixels = np.clip(channels * 255.0 + 0.5, 0, 255).astype(np.uint8)
    if pixels.shape[2] == 1:
        return Image.fromarray(pixels[..., 0])
    return Image.fromarray(pixels)
