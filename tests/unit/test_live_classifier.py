from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.services.live_classifier import css_filter, debounce_ms, is_live_only


def edits(**kw) -> ImageEdits:
    return ImageEdits.from_dict(kw)


def test_default_descriptor_is_not_live():
    assert not is_live_only(ImageEdits())
    assert css_filter(ImageEdits()) == "none"


def test_scalar_adjustments_are_live():
    e = edits(brightness=10, contrast=20, saturation=-10, grayscale=True)
    assert is_live_only(e)
    assert css_filter(e) == "brightness(110%) contrast(120%) saturate(90%) grayscale(100%)"


def test_hue_is_not_live():
    assert not is_live_only(edits(brightness=10, hue=30))


def test_any_geometry_or_kernel_breaks_liveness():
    for extra in (
        {"rotation": 90},
        {"flipHorizontal": True},
        {"width": 100},
        {"blur": 2},
        {"median": 3},
        {"sharpen": 5},
        {"crop": {"width": 0.5, "enabled": True}},
        {"clahe": {"enabled": True}},
        {"negate": True},
    ):
        assert not is_live_only(edits(brightness=10, **extra)), extra


def test_export_settings_do_not_affect_liveness():
    assert is_live_only(edits(contrast=5, exportFormat="png", quality=60))


def test_debounce_intervals():
    assert debounce_ms(edits(brightness=5)) == 50
    assert debounce_ms(edits(blur=1)) == 300
    assert debounce_ms(edits(brightness=5), live_ms=10, full_ms=20) == 10


def test_css_filter_formats_fractions():
    assert css_filter(edits(brightness=12.5)) == "brightness(112.5%)"
