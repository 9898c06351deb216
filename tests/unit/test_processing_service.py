import numpy as np

from photopipe.domain.services.processing_service import ProcessingService as PS


def test_brightness_multiplies_and_clips():
    img = np.array([[0.0, 0.5], [0.9, 1.0]], dtype=np.float32)
    out = PS.adjust_brightness(img, 1.5)
    assert out.dtype == np.float32
    assert np.allclose(out, [[0.0, 0.75], [1.0, 1.0]])


def test_contrast_pivots_on_mid_grey():
    img = np.array([0.25, 0.5, 0.75], dtype=np.float32)
    out = PS.adjust_contrast(img, 2.0)
    assert np.allclose(out, [0.0, 0.5, 1.0])


def test_gamma_brightens_midtones():
    img = np.array([0.25, 1.0], dtype=np.float32)
    assert np.allclose(PS.adjust_gamma(img, 2.0), [0.5, 1.0])


def test_invert_color():
    img = np.array([[0.0, 0.25], [0.75, 1.0]], dtype=np.float32)
    out = PS.invert_color(img)
    assert np.allclose(out, 1.0 - img)


def test_linear_per_channel():
    img = np.full((2, 2, 3), 0.5, dtype=np.float32)
    out = PS.linear(img, (1.0, 2.0, 0.0), (0.0, 0.0, 51.0))
    assert np.allclose(out[0, 0], [0.5, 1.0, 0.2])


def test_threshold_on_8bit_scale():
    img = np.array([[0.6, 0.4]], dtype=np.float32)
    out = PS.threshold(img, 128, grayscale=False)
    assert out.tolist() == [[1.0, 0.0]]


def test_threshold_grayscale_collapses_channels():
    img = np.zeros((3, 3, 3), dtype=np.float32)
    img[..., 1] = 1.0  # pure green, luminance 0.587
    out = PS.threshold(img, 128, grayscale=True)
    assert out.ndim == 2
    assert np.all(out == 1.0)


def test_normalize_stretches_range():
    gray = np.linspace(0.2, 0.6, 101, dtype=np.float32).reshape(1, -1)
    out = PS.normalize(gray)
    assert out.min() == 0.0
    assert out.max() == 1.0


def test_normalize_leaves_flat_image_alone():
    flat = np.full((4, 4), 0.3, dtype=np.float32)
    assert np.allclose(PS.normalize(flat), flat)


def test_modulate_zero_saturation_is_grey():
    rng = np.random.default_rng(1)
    img = rng.random((8, 8, 3), dtype=np.float32)
    out = PS.modulate(img, saturation=0.0)
    assert np.allclose(out[..., 0], out[..., 1], atol=1e-5)
    assert np.allclose(out[..., 1], out[..., 2], atol=1e-5)


def test_modulate_full_hue_turn_is_identity():
    rng = np.random.default_rng(2)
    img = rng.random((8, 8, 3), dtype=np.float32)
    out = PS.modulate(img, hue=360.0)
    assert np.allclose(out, img, atol=1e-4)


def test_tint_white_matches_luminance():
    rng = np.random.default_rng(3)
    img = rng.random((4, 4, 3), dtype=np.float32)
    out = PS.tint(img, 255, 255, 255)
    lum = PS.grayscale_luminosity(img)
    for c in range(3):
        assert np.allclose(out[..., c], lum, atol=1e-5)


def test_clahe_keeps_shape_and_range():
    gray = np.tile(np.linspace(0.3, 0.5, 40, dtype=np.float32), (30, 1))
    out = PS.clahe(gray, 8, 8, 0)
    assert out.shape == gray.shape
    assert out.min() >= 0.0 and out.max() <= 1.0
    # local equalization spreads a narrow tonal range
    assert np.ptp(out) > np.ptp(gray)


def test_clahe_constant_image_stays_constant():
    flat = np.full((16, 16, 3), 0.4, dtype=np.float32)
    out = PS.clahe(flat, 8, 8, 3)
    assert np.ptp(out) < 1e-6


def test_sharpen_flat_image_unchanged():
    flat = np.full((10, 10, 3), 0.5, dtype=np.float32)
    out = PS.sharpen(flat, 1.0, 1.0, 2.0, 2.0, 10.0, 20.0)
    assert np.allclose(out, flat)


def test_sharpen_increases_edge_contrast():
    img = np.zeros((10, 10), dtype=np.float32)
    img[:, 5:] = 0.6
    out = PS.sharpen(img, 1.0, 1.0, 2.0, 2.0, 50.0, 50.0)
    assert out[5, 5] > img[5, 5]


def test_convolve_identity_kernel():
    rng = np.random.default_rng(4)
    img = rng.random((6, 7, 3), dtype=np.float32)
    kernel = [0, 0, 0, 0, 1, 0, 0, 0, 0]
    out = PS.convolve(img, kernel, 3, 3)
    assert np.allclose(out, img, atol=1e-6)


def test_gaussian_blur_preserves_mean_of_flat_image():
    flat = np.full((9, 9), 0.7, dtype=np.float32)
    assert np.allclose(PS.gaussian_blur(flat, 2.0), flat, atol=1e-6)


def test_trim_box_finds_content():
    img = np.zeros((10, 10), dtype=np.float32)
    img[2:5, 3:7] = 1.0
    assert PS.trim_box(img, 10) == (3, 2, 7, 5)
    assert PS.trim_box(np.zeros((4, 4), dtype=np.float32), 10) is None


def test_composite_over_is_clipped_to_base():
    base = np.zeros((4, 4, 3), dtype=np.float32)
    over = np.ones((2, 2, 3), dtype=np.float32)
    rgb, alpha = PS.composite(base, np.ones((4, 4)), over, np.ones((2, 2)), 3, 3, "over")
    assert np.allclose(rgb[3, 3], 1.0)
    assert rgb[:3].sum() == 0.0 and rgb[3, :3].sum() == 0.0
    assert np.allclose(alpha, 1.0)


def test_composite_multiply():
    base = np.full((2, 2, 3), 0.5, dtype=np.float32)
    over = np.full((2, 2, 3), 0.5, dtype=np.float32)
    rgb, _ = PS.composite(base, np.ones((2, 2)), over, np.ones((2, 2)), 0, 0, "multiply")
    assert np.allclose(rgb, 0.25)


def test_composite_dest_keeps_base():
    base = np.full((2, 2, 3), 0.2, dtype=np.float32)
    over = np.ones((2, 2, 3), dtype=np.float32)
    rgb, _ = PS.composite(base, np.ones((2, 2)), over, np.ones((2, 2)), 0, 0, "dest")
    assert np.allclose(rgb, 0.2)
