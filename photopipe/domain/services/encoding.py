from __future__ import annotations

import logging
from io import BytesIO

from PIL import Image

from photopipe.domain.errors import EncodeError

logger = logging.getLogger(__name__)

QUALITY_FORMATS = ("jpeg", "webp", "avif", "tiff")
TARGET_SIZE_FORMATS = ("jpeg", "webp", "avif")

PIL_FORMATS = {
    "png": "PNG",
    "jpeg": "JPEG",
    "webp": "WEBP",
    "avif": "AVIF",
    "tiff": "TIFF",
    "gif": "GIF",
}

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "avif": "image/avif",
    "tiff": "image/tiff",
    "gif": "image/gif",
}

EXTENSIONS = {
    "png": "png",
    "jpeg": "jpg",
    "webp": "webp",
    "avif": "avif",
    "tiff": "tiff",
    "gif": "gif",
}

# Raster modes each container can hold without conversion
_ALLOWED_MODES = {
    "png": {"L", "LA", "RGB", "RGBA"},
    "jpeg": {"L", "RGB", "CMYK"},
    "webp": {"RGB", "RGBA"},
    "avif": {"RGB", "RGBA"},
    "tiff": {"L", "LA", "RGB", "RGBA", "CMYK", "LAB"},
    "gif": {"L", "RGB", "RGBA"},
}

_COLORSPACE_MODES = {
    "b-w": "L",
    "grey16": "L",
    "cmyk": "CMYK",
    "lab": "LAB",
}


def has_alpha(img: Image.Image) -> bool:
    return img.mode in ("LA", "RGBA", "PA") or (img.mode == "P" and "transparency" in img.info)


def flatten(img: Image.Image, colour: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """Composite an image with alpha onto a solid background."""
    background = Image.new("RGB", img.size, colour)
    rgba = img.convert("RGBA")
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def prepare_for_format(img: Image.Image, fmt: str, colorspace: str = "srgb") -> Image.Image:
    """Convert a raster to the output colorspace and to a mode `fmt` can store."""
    if fmt not in _ALLOWED_MODES:
        raise EncodeError(f"Unsupported export format: {fmt}")
    allowed = _ALLOWED_MODES[fmt]
    alpha = has_alpha(img)

    target = _COLORSPACE_MODES.get(colorspace)
    if target == "L":
        img = img.convert("LA" if alpha and "LA" in allowed else "L")
    elif target in ("CMYK", "LAB"):
        if target in allowed:
            if alpha:
                img = flatten(img)
            img = img.convert(target)
        else:
            logger.debug("%s cannot hold %s, keeping RGB", fmt, colorspace)

    if img.mode in allowed:
        return img
    if has_alpha(img):
        if "RGBA" in allowed:
            return img.convert("RGBA")
        return flatten(img)
    if img.mode == "L" or "RGB" in allowed:
        return img.convert("RGB")
    return img.convert("L")


def encode_image(img: Image.Image, fmt: str, quality: int | None = None, progressive: bool = False) -> bytes:
    """Encode a prepared raster. Each format gets its own fixed option set."""
    options: dict = {}
    if fmt == "png":
        options["compress_level"] = 6
    elif fmt == "jpeg":
        options["quality"] = quality or 80
        options["progressive"] = bool(progressive)
    elif fmt in ("webp", "avif"):
        options["quality"] = quality or 80
    elif fmt == "tiff":
        if img.mode in ("L", "RGB"):
            options["compression"] = "jpeg"
            options["quality"] = quality or 80
        else:
            options["compression"] = "tiff_adobe_deflate"

    buf = BytesIO()
    try:
        img.save(buf, format=PIL_FORMATS[fmt], **options)
    except (KeyError, OSError, ValueError) as exc:
        raise EncodeError(f"Failed to encode {fmt}: {exc}") from exc
    return buf.getvalue()
