import io

import numpy as np
import pytest
from PIL import Image

from photopipe.domain.errors import EncodeError, ValidationError
from photopipe.domain.services import target_size_encoder
from photopipe.domain.services.target_size_encoder import encode_to_target


@pytest.fixture()
def noisy():
    rng = np.random.default_rng(7)
    return Image.fromarray(rng.integers(0, 256, (128, 128, 3), dtype=np.uint8))


def test_generous_target_met_at_start_quality(noisy):
    result = encode_to_target(noisy, 10_000, "jpeg")
    assert result.met_target
    assert result.quality == 90
    assert result.size_bytes <= 10_000 * 1024


def test_target_met_below_start(noisy):
    sizes = {q: len(_jpeg(noisy, q)) for q in range(90, 9, -10)}
    target_kb = (sizes[50] // 1024) + 1
    result = encode_to_target(noisy, target_kb, "jpeg")
    assert result.met_target
    assert result.size_bytes <= target_kb * 1024
    assert result.quality <= 50


def test_unreachable_target_returns_smallest(noisy):
    result = encode_to_target(noisy, 1, "jpeg")
    assert not result.met_target
    assert result.quality == 10
    assert result.size_bytes == len(result.data)


def test_iteration_budget(noisy, monkeypatch):
    calls = []
    real = target_size_encoder.encode_image

    def counting(*args, **kwargs):
        calls.append(args[2])
        return real(*args, **kwargs)

    monkeypatch.setattr(target_size_encoder, "encode_image", counting)
    encode_to_target(noisy, 1, "webp")
    assert calls == [90, 80, 70, 60, 50, 40, 30, 20, 10]


def test_single_pass_search_returns_its_only_attempt(noisy):
    result = encode_to_target(noisy, 1, "jpeg", start_quality=40, floor=40)
    assert not result.met_target
    assert result.quality == 40


def test_smallest_miss_is_kept_when_sizes_are_not_monotonic(noisy, monkeypatch):
    sizes = {90: b"x" * 9000, 80: b"x" * 5000, 70: b"x" * 7000}
    monkeypatch.setattr(target_size_encoder, "encode_image", lambda img, fmt, q, progressive: sizes[q])
    result = encode_to_target(noisy, 1, "jpeg", floor=70)
    assert (result.quality, result.size_bytes) == (80, 5000)


def test_empty_quality_range_is_rejected(noisy):
    with pytest.raises(ValidationError):
        encode_to_target(noisy, 1, "jpeg", start_quality=20, floor=30)


def test_deterministic(noisy):
    a = encode_to_target(noisy, 5, "webp")
    b = encode_to_target(noisy, 5, "webp")
    assert a == b


def test_png_is_not_a_quality_format(noisy):
    with pytest.raises(EncodeError):
        encode_to_target(noisy, 10, "png")


def test_alpha_is_flattened_for_jpeg():
    img = Image.new("RGBA", (8, 8), (0, 0, 0, 0))
    result = encode_to_target(img, 100, "jpeg")
    out = Image.open(io.BytesIO(result.data))
    assert out.mode == "RGB"


def _jpeg(img, quality):
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, progressive=False)
    return buf.getvalue()
