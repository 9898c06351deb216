from __future__ import annotations

import logging
import math
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Mapping

from photopipe.domain.errors import ValidationError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("png", "jpeg", "webp", "avif", "tiff", "gif", "original")
RESIZE_UNITS = ("px", "%")
RESIZE_FITS = ("cover", "contain", "fill", "inside", "outside")
RESIZE_POSITIONS = (
    "centre",
    "top",
    "right top",
    "right",
    "right bottom",
    "bottom",
    "left bottom",
    "left",
    "left top",
)
RESIZE_KERNELS = ("nearest", "linear", "cubic", "mitchell", "lanczos2", "lanczos3")
BLEND_MODES = (
    "clear",
    "source",
    "over",
    "in",
    "out",
    "atop",
    "dest",
    "dest-over",
    "dest-in",
    "dest-out",
    "dest-atop",
    "xor",
    "add",
    "saturate",
    "multiply",
    "screen",
    "overlay",
    "darken",
    "lighten",
    "colour-dodge",
    "colour-burn",
    "hard-light",
    "soft-light",
    "difference",
    "exclusion",
)
GRAVITIES = (
    "north",
    "northeast",
    "east",
    "southeast",
    "south",
    "southwest",
    "west",
    "northwest",
    "center",
    "centre",
)
INTERPOLATORS = ("nearest", "bilinear", "bicubic", "nohalo", "lbb", "vsqbs")
OUTPUT_COLORSPACES = ("srgb", "rgb", "cmyk", "lab", "b-w", "grey16", "rgb16", "scrgb")
PIPELINE_COLORSPACES = ("rgb16", "scrgb", "lab", "grey16")

# Largest pixel extent accepted for resize targets and padding.
MAX_DIMENSION = 16384

_CHOICES: dict[str, tuple[str, ...]] = {
    "unit": RESIZE_UNITS,
    "resize_fit": RESIZE_FITS,
    "resize_position": RESIZE_POSITIONS,
    "resize_kernel": RESIZE_KERNELS,
    "blend": BLEND_MODES,
    "gravity": GRAVITIES,
    "interpolator": INTERPOLATORS,
    "export_format": EXPORT_FORMATS,
    "to_colorspace": OUTPUT_COLORSPACES,
    "pipeline_colorspace": PIPELINE_COLORSPACES,
}
_NULLABLE = {"export_format"}
_SCALAR_OR_VECTOR = {"multiplier", "offset"}
_WIRE_ALIASES = {"download_target_kb": "downloadTargetKB"}
_EPS = 1e-9


def _wire_name(name: str) -> str:
    if name in _WIRE_ALIASES:
        return _WIRE_ALIASES[name]
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require(condition: bool, message: str, field_name: str) -> None:
    if not condition:
        raise ValidationError(message, field_name)


def _in_range(value: float, low: float, high: float, field_name: str) -> None:
    _require(low <= value <= high, f"must be between {low} and {high}, got {value}", field_name)


@dataclass(frozen=True)
class CropRegion:
    """Crop rectangle in normalized [0, 1] image-fraction coordinates."""

    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0
    enabled: bool = False

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            _in_range(getattr(self, name), 0.0, 1.0, name)
        _require(self.x + self.width <= 1.0 + _EPS, "x + width must not exceed 1", "width")
        _require(self.y + self.height <= 1.0 + _EPS, "y + height must not exceed 1", "height")


@dataclass(frozen=True)
class TintOptions:
    r: int = 255
    g: int = 255
    b: int = 255
    enabled: bool = False

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            _in_range(getattr(self, name), 0, 255, name)


@dataclass(frozen=True)
class SharpenOptions:
    # sigma of the gaussian mask, m1/m2 flat/jagged gains, x1 flat threshold,
    # y2/y3 max brightening/darkening (0-255 scale)
    sigma: float = 1.0
    m1: float = 1.0
    m2: float = 2.0
    x1: float = 2.0
    y2: float = 10.0
    y3: float = 20.0
    enabled: bool = False

    def __post_init__(self) -> None:
        _in_range(self.sigma, 0.01, 10.0, "sigma")
        for name in ("m1", "m2", "x1", "y2", "y3"):
            _in_range(getattr(self, name), 0.0, 1000000.0, name)


@dataclass(frozen=True)
class ClaheOptions:
    width: int = 8
    height: int = 8
    max_slope: int = 3
    enabled: bool = False

    def __post_init__(self) -> None:
        _in_range(self.width, 1, MAX_DIMENSION, "width")
        _in_range(self.height, 1, MAX_DIMENSION, "height")
        _in_range(self.max_slope, 0, 100, "maxSlope")


@dataclass(frozen=True)
class LinearOptions:
    """`multiplier` and `offset` are either scalars or (r, g, b) triples."""

    multiplier: float | tuple[float, ...] = 1.0
    offset: float | tuple[float, ...] = 0.0
    enabled: bool = False

    def __post_init__(self) -> None:
        for name in ("multiplier", "offset"):
            value = getattr(self, name)
            if isinstance(value, tuple):
                _require(len(value) == 3, "per-channel values need exactly 3 entries", name)


@dataclass(frozen=True)
class ThresholdOptions:
    value: int = 128
    grayscale: bool = True
    enabled: bool = False

    def __post_init__(self) -> None:
        _in_range(self.value, 0, 255, "value")


@dataclass(frozen=True)
class ModulateOptions:
    brightness: float = 1.0
    saturation: float = 1.0
    hue: float = 0.0
    lightness: float = 0.0
    enabled: bool = False

    def __post_init__(self) -> None:
        _require(self.brightness >= 0, "must not be negative", "brightness")
        _require(self.saturation >= 0, "must not be negative", "saturation")


@dataclass(frozen=True)
class CompositeOptions:
    input: str = ""
    blend: str = "over"
    gravity: str = "centre"
    left: int = 0
    top: int = 0
    enabled: bool = False


@dataclass(frozen=True)
class Background:
    r: int = 0
    g: int = 0
    b: int = 0
    alpha: float = 1.0

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            _in_range(getattr(self, name), 0, 255, name)
        _in_range(self.alpha, 0.0, 1.0, "alpha")

    def rgba(self) -> tuple[int, int, int, int]:
        return (self.r, self.g, self.b, int(round(self.alpha * 255)))


@dataclass(frozen=True)
class ExtendOptions:
    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0
    background: Background = field(default_factory=Background)
    enabled: bool = False

    def __post_init__(self) -> None:
        for name in ("top", "bottom", "left", "right"):
            _in_range(getattr(self, name), 0, MAX_DIMENSION, name)


@dataclass(frozen=True)
class TrimOptions:
    threshold: float = 10.0
    enabled: bool = False

    def __post_init__(self) -> None:
        _in_range(self.threshold, 0.0, 255.0, "threshold")


@dataclass(frozen=True)
class AffineOptions:
    matrix: tuple[float, ...] = (1.0, 0.0, 0.0, 1.0)
    background: Background = field(default_factory=Background)
    interpolator: str = "bicubic"
    enabled: bool = False

    def __post_init__(self) -> None:
        _require(len(self.matrix) == 4, "must have exactly 4 entries", "matrix")
        a, b, c, d = self.matrix
        _require(abs(a * d - b * c) > _EPS, "must not be singular", "matrix")


@dataclass(frozen=True)
class ConvolveOptions:
    width: int = 3
    height: int = 3
    kernel: tuple[float, ...] = (-1.0, -1.0, -1.0, -1.0, 8.0, -1.0, -1.0, -1.0, -1.0)
    scale: float = 1.0
    offset: float = 0.0
    enabled: bool = False

    def __post_init__(self) -> None:
        _in_range(self.width, 1, 1001, "width")
        _in_range(self.height, 1, 1001, "height")
        _require(
            len(self.kernel) == self.width * self.height,
            f"needs width*height ({self.width * self.height}) entries, got {len(self.kernel)}",
            "kernel",
        )
        _require(self.scale != 0, "must not be zero", "scale")


@dataclass(frozen=True)
class ImageEdits:
    """Declarative description of every transformation applied to a source image.

    Instances are immutable and validated on construction. Groups without an
    `enabled` flag are always active but default to a no-op value.
    """

    # Transform
    rotation: float = 0.0
    flip_horizontal: bool = False
    flip_vertical: bool = False
    auto_orient: bool = False

    # Resize
    width: int = 0
    height: int = 0
    unit: str = "px"
    aspect_ratio_locked: bool = True
    resize_fit: str = "cover"
    resize_position: str = "centre"
    resize_kernel: str = "lanczos3"
    without_enlargement: bool = False
    without_reduction: bool = False

    crop: CropRegion = field(default_factory=CropRegion)

    # Color
    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0
    hue: float = 0.0
    tint: TintOptions = field(default_factory=TintOptions)
    grayscale: bool = False
    negate: bool = False

    # Filters
    blur: float = 0.0
    sharpen: SharpenOptions = field(default_factory=SharpenOptions)
    median: int = 0
    gamma: float = 1.0
    normalize: bool = False
    clahe: ClaheOptions = field(default_factory=ClaheOptions)
    linear: LinearOptions = field(default_factory=LinearOptions)
    threshold: ThresholdOptions = field(default_factory=ThresholdOptions)
    modulate: ModulateOptions = field(default_factory=ModulateOptions)
    composite: CompositeOptions = field(default_factory=CompositeOptions)
    extend: ExtendOptions = field(default_factory=ExtendOptions)
    trim: TrimOptions = field(default_factory=TrimOptions)
    affine: AffineOptions = field(default_factory=AffineOptions)
    convolve: ConvolveOptions = field(default_factory=ConvolveOptions)

    # Output
    export_format: str | None = "webp"
    quality: int = 80
    progressive: bool = False
    download_target_kb: int = 0
    to_colorspace: str = "srgb"
    pipeline_colorspace: str = "scrgb"

    def __post_init__(self) -> None:
        _require(math.isfinite(self.rotation), "must be finite", "rotation")
        max_extent = MAX_DIMENSION if self.unit == "px" else 1000
        _in_range(self.width, 0, max_extent, "width")
        _in_range(self.height, 0, max_extent, "height")
        for name in ("brightness", "contrast", "saturation"):
            _in_range(getattr(self, name), -100.0, 100.0, name)
        _in_range(self.hue, -360.0, 360.0, "hue")
        _in_range(self.blur, 0.0, 1000.0, "blur")
        _in_range(self.median, 0, 99, "median")
        _in_range(self.gamma, 1.0, 3.0, "gamma")
        _in_range(self.quality, 1, 100, "quality")
        _require(self.download_target_kb >= 0, "must not be negative", "downloadTargetKB")

    # ------------------------------------------------------------------ wire form

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ImageEdits:
        """Build a validated descriptor from its JSON wire form.

        camelCase and snake_case keys are both accepted. Missing keys take their
        defaults. A legacy numeric `sharpen` is normalized to the object form.
        """
        return _build(cls, data or {}, "")

    def to_dict(self) -> dict[str, Any]:
        return _dump(self)

    def merge(self, partial: Mapping[str, Any]) -> ImageEdits:
        merged = _deep_merge(self.to_dict(), partial)
        return ImageEdits.from_dict(merged)

    def reset(self, preserve_export: bool = True) -> ImageEdits:
        if preserve_export:
            return ImageEdits(export_format=self.export_format)
        return ImageEdits()

    # --------------------------------------------------------------- inspection

    def active_operations(self) -> tuple[str, ...]:
        """Names of the operations this descriptor would run, in pipeline order."""
        ops: list[str] = []
        if self.auto_orient:
            ops.append("auto_orient")
        if self.rotation % 360 != 0:
            ops.append("rotate")
        if self.flip_horizontal:
            ops.append("flip_horizontal")
        if self.flip_vertical:
            ops.append("flip_vertical")
        if self.affine.enabled:
            ops.append("affine")
        if self.crop.enabled:
            ops.append("crop")
        if self.extend.enabled:
            ops.append("extend")
        if self.trim.enabled:
            ops.append("trim")
        if self.width > 0 or self.height > 0:
            ops.append("resize")
        if self.to_colorspace != "srgb" or self.pipeline_colorspace != "scrgb":
            ops.append("colorspace")
        if self.gamma != 1.0:
            ops.append("gamma")
        if self.normalize:
            ops.append("normalize")
        if self.clahe.enabled:
            ops.append("clahe")
        if self.linear.enabled:
            ops.append("linear")
        if self.modulate.enabled:
            ops.append("modulate")
        else:
            for name in ("brightness", "contrast", "saturation", "hue"):
                if getattr(self, name) != 0:
                    ops.append(name)
        if self.tint.enabled:
            ops.append("tint")
        if self.threshold.enabled:
            ops.append("threshold")
        if self.negate:
            ops.append("negate")
        if self.grayscale:
            ops.append("grayscale")
        if self.blur > 0:
            ops.append("blur")
        if self.median > 0:
            ops.append("median")
        if self.sharpen.enabled:
            ops.append("sharpen")
        if self.convolve.enabled:
            ops.append("convolve")
        if self.composite.enabled and self.composite.input:
            ops.append("composite")
        return tuple(ops)

    def has_edits(self) -> bool:
        """True when any pixel-affecting operation is active. Export settings are not edits."""
        return bool(self.active_operations())


# ---------------------------------------------------------------------- helpers


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _default_of(f) -> Any:
    if f.default is not MISSING:
        return f.default
    return f.default_factory()


def _build(cls, data: Any, path: str):
    if not isinstance(data, Mapping):
        raise ValidationError("expected an object", path or None)
    by_key = {}
    for f in fields(cls):
        by_key[f.name] = f
        by_key[_wire_name(f.name)] = f
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        f = by_key.get(key)
        if f is None:
            logger.debug("Ignoring unknown descriptor key %s", _join(path, str(key)))
            continue
        kwargs[f.name] = _coerce(f.name, _default_of(f), value, _join(path, _wire_name(f.name)))
    try:
        return cls(**kwargs)
    except ValidationError as exc:
        if path and exc.field:
            raise ValidationError(exc.reason, _join(path, exc.field)) from None
        raise


def _coerce(name: str, default: Any, value: Any, path: str) -> Any:
    if name == "sharpen" and _is_number(value):
        amount = float(value)
        if amount > 0:
            return SharpenOptions(sigma=min(max(amount / 10, 0.01), 10.0), m1=1.0, m2=2.0, enabled=True)
        return SharpenOptions()
    if value is None and name in _NULLABLE:
        return None
    if is_dataclass(default):
        return _build(type(default), value, path)
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValidationError("expected a boolean", path)
        return value
    if name in _SCALAR_OR_VECTOR and isinstance(value, (list, tuple)):
        return _numbers(value, path)
    if isinstance(default, int):
        if not _is_number(value) or not float(value).is_integer():
            raise ValidationError("expected an integer", path)
        return int(value)
    if isinstance(default, float):
        if not _is_number(value) or not math.isfinite(value):
            raise ValidationError("expected a finite number", path)
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ValidationError("expected a string", path)
        choices = _CHOICES.get(name)
        if choices is not None and value not in choices:
            raise ValidationError(f"must be one of {', '.join(choices)}", path)
        return value
    if isinstance(default, tuple):
        if not isinstance(value, (list, tuple)):
            raise ValidationError("expected a list of numbers", path)
        return _numbers(value, path)
    raise ValidationError("unsupported value", path)


def _numbers(values, path: str) -> tuple[float, ...]:
    out = []
    for item in values:
        if not _is_number(item) or not math.isfinite(item):
            raise ValidationError("expected a list of finite numbers", path)
        out.append(float(item))
    return tuple(out)


def _dump(obj: Any) -> Any:
    if is_dataclass(obj):
        return {_wire_name(f.name): _dump(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, tuple):
        return list(obj)
    return obj


def _deep_merge(base: dict[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in partial.items():
        key = _wire_name(str(key))
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out
