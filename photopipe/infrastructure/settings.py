from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    env: str = "development"
    log_level: str = "INFO"
    max_upload_bytes: int = 10 * 1024 * 1024
    pipeline_timeout_s: float = 30.0
    overlay_timeout_s: float = 10.0
    live_debounce_ms: int = 50
    full_debounce_ms: int = 300
    history_limit: int = 50
    max_sessions: int = 100

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            env=os.getenv("ENV", "development"),
            log_level=os.getenv("PHOTOPIPE_LOG_LEVEL", "INFO").upper(),
            max_upload_bytes=_int_env("PHOTOPIPE_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            pipeline_timeout_s=_float_env("PHOTOPIPE_PIPELINE_TIMEOUT_S", 30.0),
            overlay_timeout_s=_float_env("PHOTOPIPE_OVERLAY_TIMEOUT_S", 10.0),
            live_debounce_ms=_int_env("PHOTOPIPE_LIVE_DEBOUNCE_MS", 50),
            full_debounce_ms=_int_env("PHOTOPIPE_FULL_DEBOUNCE_MS", 300),
            history_limit=_int_env("PHOTOPIPE_HISTORY_LIMIT", 50),
            max_sessions=_int_env("PHOTOPIPE_MAX_SESSIONS", 100),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
