import pytest

from photopipe.domain.entities.image_edits import CropRegion, ImageEdits, SharpenOptions
from photopipe.domain.errors import ValidationError


def test_defaults_are_no_op():
    edits = ImageEdits()
    assert edits.export_format == "webp"
    assert edits.quality == 80
    assert not edits.has_edits()
    assert edits.active_operations() == ()


def test_from_dict_accepts_camel_and_snake_case():
    edits = ImageEdits.from_dict({"flipHorizontal": True, "flip_vertical": True, "exportFormat": "png"})
    assert edits.flip_horizontal and edits.flip_vertical
    assert edits.export_format == "png"


def test_from_dict_nested_groups():
    edits = ImageEdits.from_dict({"crop": {"x": 0.25, "y": 0.25, "width": 0.5, "height": 0.5, "enabled": True}})
    assert edits.crop == CropRegion(0.25, 0.25, 0.5, 0.5, True)
    assert edits.active_operations() == ("crop",)


def test_legacy_numeric_sharpen_is_normalized():
    edits = ImageEdits.from_dict({"sharpen": 15})
    assert edits.sharpen == SharpenOptions(sigma=1.5, m1=1.0, m2=2.0, enabled=True)

    off = ImageEdits.from_dict({"sharpen": 0})
    assert not off.sharpen.enabled


def test_unknown_keys_are_ignored():
    edits = ImageEdits.from_dict({"somethingNew": 3, "crop": {"zoom": 2}})
    assert edits == ImageEdits()


def test_crop_out_of_range_names_field():
    with pytest.raises(ValidationError) as exc:
        ImageEdits.from_dict({"crop": {"x": 0.6, "width": 0.6, "enabled": True}})
    assert exc.value.field == "crop.width"


def test_negative_crop_rejected():
    with pytest.raises(ValidationError):
        ImageEdits.from_dict({"crop": {"width": -0.1}})


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"quality": 0}, "quality"),
        ({"brightness": 150}, "brightness"),
        ({"gamma": 0.5}, "gamma"),
        ({"blur": -1}, "blur"),
        ({"width": -10}, "width"),
        ({"resizeFit": "stretch"}, "resizeFit"),
        ({"exportFormat": "bmp"}, "exportFormat"),
        ({"grayscale": "yes"}, "grayscale"),
        ({"downloadTargetKB": -1}, "downloadTargetKB"),
    ],
)
def test_out_of_contract_values_rejected(payload, field):
    with pytest.raises(ValidationError) as exc:
        ImageEdits.from_dict(payload)
    assert exc.value.field == field


def test_convolve_kernel_must_match_size():
    with pytest.raises(ValidationError) as exc:
        ImageEdits.from_dict({"convolve": {"width": 3, "height": 3, "kernel": [1, 2, 3], "enabled": True}})
    assert exc.value.field == "convolve.kernel"


def test_linear_accepts_scalar_or_triple():
    scalar = ImageEdits.from_dict({"linear": {"multiplier": 1.2, "offset": 5, "enabled": True}})
    assert scalar.linear.multiplier == 1.2
    triple = ImageEdits.from_dict({"linear": {"multiplier": [1, 1.1, 0.9], "enabled": True}})
    assert triple.linear.multiplier == (1.0, 1.1, 0.9)
    with pytest.raises(ValidationError):
        ImageEdits.from_dict({"linear": {"multiplier": [1, 2]}})


def test_to_dict_uses_wire_names():
    wire = ImageEdits(download_target_kb=200).to_dict()
    assert wire["downloadTargetKB"] == 200
    assert wire["clahe"]["maxSlope"] == 3
    assert wire["affine"]["matrix"] == [1.0, 0.0, 0.0, 1.0]
    assert ImageEdits.from_dict(wire) == ImageEdits(download_target_kb=200)


def test_merge_is_deep():
    edits = ImageEdits.from_dict({"crop": {"x": 0.1, "width": 0.5, "enabled": True}})
    merged = edits.merge({"crop": {"y": 0.2, "height": 0.5}, "brightness": 10})
    assert merged.crop == CropRegion(0.1, 0.2, 0.5, 0.5, True)
    assert merged.brightness == 10
    assert edits.brightness == 0


def test_reset_preserves_export_format():
    edits = ImageEdits.from_dict({"brightness": 20, "exportFormat": "jpeg"})
    assert edits.reset() == ImageEdits(export_format="jpeg")
    assert edits.reset(preserve_export=False) == ImageEdits()


def test_export_settings_alone_are_not_edits():
    edits = ImageEdits.from_dict({"exportFormat": "avif", "quality": 50, "progressive": True})
    assert not edits.has_edits()


def test_rotation_full_turn_is_not_an_edit():
    assert not ImageEdits(rotation=360).has_edits()
    assert ImageEdits(rotation=-90).active_operations() == ("rotate",)


def test_modulate_supersedes_scalars_in_operation_list():
    edits = ImageEdits.from_dict({"brightness": 10, "modulate": {"hue": 30, "enabled": True}})
    ops = edits.active_operations()
    assert "modulate" in ops and "brightness" not in ops
