from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.errors import PresetNotFoundError


@dataclass(frozen=True)
class FilterPreset:
    """A named partial descriptor. Applying it merges `edits` and labels history with `name`."""

    name: str
    edits: Mapping[str, Any]

    def descriptor(self) -> ImageEdits:
        return ImageEdits.from_dict(dict(self.edits))


def _preset(name: str, brightness: int, contrast: int, saturation: int, grayscale: bool = False) -> FilterPreset:
    edits = {"brightness": brightness, "contrast": contrast, "saturation": saturation, "grayscale": grayscale}
    return FilterPreset(name, MappingProxyType(edits))


# Every preset sets the same four live adjustments, so applying one replaces the previous
FILTER_PRESETS: tuple[FilterPreset, ...] = (
    _preset("None", 0, 0, 0),
    _preset("Sepia", 10, 15, -20),
    _preset("Vintage", 5, 20, -10),
    _preset("Noir", -5, 30, 0, grayscale=True),
    _preset("Technicolor", 10, 25, 40),
    _preset("Arctic", 15, 10, -15),
    _preset("Warm", 8, 12, 15),
    _preset("Cool", 5, 8, -5),
    _preset("Vivid", 5, 20, 60),
    _preset("Faded", 15, -20, -30),
    _preset("Drama", -10, 50, 20),
    _preset("Matte", 10, -15, -10),
)

_BY_NAME = {preset.name.lower(): preset for preset in FILTER_PRESETS}


def get_preset(name: str) -> FilterPreset:
    """Look a preset up by name, ignoring case."""
    try:
        return _BY_NAME[name.strip().lower()]
    except KeyError:
        raise PresetNotFoundError(name) from None
