from __future__ import annotations

import math

from PIL import Image, ImageOps

from photopipe.domain.entities.image_edits import AffineOptions, Background, CropRegion, ImageEdits
from photopipe.domain.services.encoding import has_alpha

RESAMPLING = {
    "nearest": Image.Resampling.NEAREST,
    "linear": Image.Resampling.BILINEAR,
    "cubic": Image.Resampling.BICUBIC,
    "mitchell": Image.Resampling.BICUBIC,
    "lanczos2": Image.Resampling.LANCZOS,
    "lanczos3": Image.Resampling.LANCZOS,
}

# nohalo, lbb and vsqbs have no Pillow counterpart and fall back to bicubic
INTERPOLATION = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
}

CENTERING = {
    "centre": (0.5, 0.5),
    "top": (0.5, 0.0),
    "right top": (1.0, 0.0),
    "right": (1.0, 0.5),
    "right bottom": (1.0, 1.0),
    "bottom": (0.5, 1.0),
    "left bottom": (0.0, 1.0),
    "left": (0.0, 0.5),
    "left top": (0.0, 0.0),
}

# Clockwise quarter turns -> Pillow transpose (Pillow rotates counter-clockwise)
_QUARTER_TURNS = {
    1: Image.Transpose.ROTATE_270,
    2: Image.Transpose.ROTATE_180,
    3: Image.Transpose.ROTATE_90,
}


def quarter_turns(rotation: float) -> int:
    return int(round(rotation / 90.0)) % 4


def rotate_quarter(img: Image.Image, turns: int) -> Image.Image:
    """Lossless clockwise rotation by `turns` * 90 degrees."""
    turns %= 4
    if turns == 0:
        return img
    return img.transpose(_QUARTER_TURNS[turns])


def fill_colour(img: Image.Image, background: Background):
    r, g, b, a = background.rgba()
    if img.mode == "L":
        return round(0.299 * r + 0.587 * g + 0.114 * b)
    if img.mode == "LA":
        return (round(0.299 * r + 0.587 * g + 0.114 * b), a)
    if img.mode == "RGB":
        return (r, g, b)
    return (r, g, b, a)


def with_alpha_for(img: Image.Image, background: Background) -> Image.Image:
    """Promote to an alpha mode when the background is translucent."""
    if background.alpha >= 1.0 or has_alpha(img):
        return img
    return img.convert("LA" if img.mode == "L" else "RGBA")


def affine(img: Image.Image, options: AffineOptions) -> Image.Image:
    """
    Apply the 2x2 matrix [a, b, c, d] (x' = a*x + b*y, y' = c*x + d*y).

    The output canvas is the bounding box of the transformed image. Uncovered
    pixels take the background colour.
    """
    a, b, c, d = options.matrix
    w, h = img.size
    corners = [(0, 0), (w, 0), (0, h), (w, h)]
    xs = [a * x + b * y for x, y in corners]
    ys = [c * x + d * y for x, y in corners]
    min_x, min_y = min(xs), min(ys)
    out_w = max(1, int(math.ceil(max(xs) - min_x - 1e-6)))
    out_h = max(1, int(math.ceil(max(ys) - min_y - 1e-6)))

    # Pillow wants the inverse mapping: output pixel -> input pixel
    det = a * d - b * c
    ia, ib, ic, id_ = d / det, -b / det, -c / det, a / det
    data = (ia, ib, ia * min_x + ib * min_y, ic, id_, ic * min_x + id_ * min_y)

    img = with_alpha_for(img, options.background)
    return img.transform(
        (out_w, out_h),
        Image.Transform.AFFINE,
        data,
        resample=INTERPOLATION.get(options.interpolator, Image.Resampling.BICUBIC),
        fillcolor=fill_colour(img, options.background),
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def crop_box(width: int, height: int, region: CropRegion) -> tuple[int, int, int, int] | None:
    """
    Resolve a normalized crop against the current size.

    Returns None when the rectangle is empty or, after rounding, runs past the
    image bounds. Such a crop is skipped rather than shrunk.
    """
    left = _round_half_up(region.x * width)
    top = _round_half_up(region.y * height)
    crop_w = _round_half_up(region.width * width)
    crop_h = _round_half_up(region.height * height)
    if crop_w <= 0 or crop_h <= 0:
        return None
    if left + crop_w > width or top + crop_h > height:
        return None
    return left, top, left + crop_w, top + crop_h


def extend(img: Image.Image, top: int, bottom: int, left: int, right: int, background: Background) -> Image.Image:
    img = with_alpha_for(img, background)
    w, h = img.size
    canvas = Image.new(img.mode, (w + left + right, h + top + bottom), fill_colour(img, background))
    canvas.paste(img, (left, top))
    return canvas


def resize_target(width: int, height: int, edits: ImageEdits) -> tuple[int, int]:
    """Resolve the requested size in pixels. A missing side follows the current aspect ratio."""
    tw, th = edits.width, edits.height
    if edits.unit == "%":
        tw = round(width * tw / 100) if tw else 0
        th = round(height * th / 100) if th else 0
    aspect = width / height
    if tw and not th:
        th = round(tw / aspect)
    elif th and not tw:
        tw = round(th * aspect)
    return max(1, tw), max(1, th)


def resize(img: Image.Image, size: tuple[int, int], fit: str, position: str, kernel: str) -> Image.Image:
    tw, th = size
    method = RESAMPLING[kernel]
    centering = CENTERING.get(position, (0.5, 0.5))
    if fit == "fill":
        return img.resize((tw, th), method)
    if fit == "cover":
        return ImageOps.fit(img, (tw, th), method=method, centering=centering)
    if fit == "contain":
        return ImageOps.pad(img, (tw, th), method=method, color=fill_colour(img, Background()), centering=centering)
    if fit == "inside":
        return ImageOps.contain(img, (tw, th), method=method)
    # outside: smallest size that covers the box, aspect ratio preserved
    w, h = img.size
    scale = max(tw / w, th / h)
    return img.resize((max(1, round(w * scale)), max(1, round(h * scale))), method)
