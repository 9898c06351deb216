from __future__ import annotations

import logging
import os

import requests

from photopipe.domain.errors import CompositeError

logger = logging.getLogger(__name__)


class OverlayFetcher:
    """Downloads composite overlays referenced by http(s) URL."""

    def __init__(self, timeout: float | None = None, max_bytes: int | None = None) -> None:
        self.timeout = timeout if timeout is not None else float(os.getenv("PHOTOPIPE_OVERLAY_TIMEOUT_S", "10"))
        self.max_bytes = max_bytes if max_bytes is not None else int(
            os.getenv("PHOTOPIPE_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))
        )

    def __call__(self, url: str) -> bytes:
        return self.fetch(url)

    def fetch(self, url: str) -> bytes:
        if not url.startswith(("http://", "https://")):
            raise CompositeError("Overlay URL must start with http:// or https://")
        try:
            with requests.get(url, timeout=self.timeout, headers={"User-Agent": "photopipe/0.1"}, stream=True) as resp:
                resp.raise_for_status()
                return self._read_capped(resp)
        except requests.RequestException as exc:
            logger.warning("Overlay fetch failed for %s: %s", url, exc)
            raise CompositeError(f"Could not fetch overlay: {exc}") from exc

    def _read_capped(self, resp: requests.Response) -> bytes:
        """Read the body in chunks, giving up as soon as it passes `max_bytes`."""
        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise CompositeError(f"Overlay is larger than {self.max_bytes} bytes")
        buf = bytearray()
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            buf.extend(chunk)
            if len(buf) > self.max_bytes:
                raise CompositeError(f"Overlay is larger than {self.max_bytes} bytes")
        return bytes(buf)
