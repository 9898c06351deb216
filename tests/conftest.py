import io
import os
import sys
from pathlib import Path

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root is on sys.path so 'photopipe' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENV", "development")
os.environ.setdefault("PHOTOPIPE_LOG_LEVEL", "WARNING")
os.environ.setdefault("PHOTOPIPE_LIVE_DEBOUNCE_MS", "0")
os.environ.setdefault("PHOTOPIPE_FULL_DEBOUNCE_MS", "0")


def make_image_bytes(w=64, h=48, fmt="PNG", color=(128, 64, 32), gradient=True) -> bytes:
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[:, :] = color
    if gradient:
        arr[..., 0] = np.linspace(0, 255, w, dtype=np.uint8)[None, :]
        arr[..., 1] = np.linspace(0, 255, h, dtype=np.uint8)[:, None]
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_image_bytes(400, 300, fmt="JPEG")


@pytest.fixture(scope="session")
def client() -> TestClient:
    # lazy import after env configured
    from photopipe.main import create_app

    app = create_app()
    return TestClient(app)


@pytest.fixture()
def make_image():
    return make_image_bytes
