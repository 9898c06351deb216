from __future__ import annotations

from functools import lru_cache

from photopipe.application.use_cases.download_image import DownloadImageUseCase
from photopipe.application.use_cases.process_image import ProcessImageUseCase
from photopipe.application.use_cases.render_preview import RenderScheduler
from photopipe.application.use_cases.upload_image import UploadImageUseCase
from photopipe.domain.services.pipeline_executor import PipelineExecutor
from photopipe.infrastructure.settings import Settings, get_settings
from photopipe.infrastructure.storage.overlay_fetcher import OverlayFetcher
from photopipe.infrastructure.storage.session_repository import SessionRepository


def get_app_settings() -> Settings:
    return get_settings()


def get_executor() -> PipelineExecutor:
    settings = get_settings()
    return PipelineExecutor(overlay_loader=OverlayFetcher(timeout=settings.overlay_timeout_s))


def get_process_use_case() -> ProcessImageUseCase:
    return ProcessImageUseCase(executor=get_executor(), timeout_s=get_settings().pipeline_timeout_s)


def get_session_repo() -> SessionRepository:
    settings = get_settings()
    return SessionRepository(history_limit=settings.history_limit, max_sessions=settings.max_sessions)


def get_upload_use_case() -> UploadImageUseCase:
    return UploadImageUseCase(sessions=get_session_repo(), max_bytes=get_settings().max_upload_bytes)


def get_download_use_case() -> DownloadImageUseCase:
    return DownloadImageUseCase()


@lru_cache(maxsize=1)
def get_render_scheduler() -> RenderScheduler:
    # one scheduler per process so supersession sees every pending request
    settings = get_settings()
    return RenderScheduler(
        get_process_use_case(),
        live_debounce_ms=settings.live_debounce_ms,
        full_debounce_ms=settings.full_debounce_ms,
    )
