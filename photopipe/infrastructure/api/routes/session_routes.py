from __future__ import annotations

import asyncio
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from photopipe.application.dtos.pipeline_dto import ProcessMetadata, data_url
from photopipe.application.dtos.session_dto import (
    EditRequest,
    HistoryResponse,
    RenderResponse,
    SessionStateResponse,
    TransitionResponse,
)
from photopipe.application.use_cases.download_image import DownloadImageUseCase
from photopipe.application.use_cases.render_preview import RenderScheduler
from photopipe.application.use_cases.upload_image import UploadImageUseCase
from photopipe.domain.errors import (
    DecodeError,
    EncodeError,
    NothingToDownloadError,
    NothingToSaveError,
    PresetNotFoundError,
    SessionNotFoundError,
    ValidationError,
)
from photopipe.domain.services.edit_session import EditSession
from photopipe.domain.services.filter_presets import get_preset
from photopipe.infrastructure.api.dependencies import (
    get_download_use_case,
    get_render_scheduler,
    get_session_repo,
    get_upload_use_case,
)
from photopipe.infrastructure.storage.session_repository import SessionRepository

router = APIRouter(
    prefix="/sessions",
    tags=["Edit Sessions"],
    responses={
        404: {"description": "Not Found - Session does not exist"},
        422: {"description": "Validation Error - Invalid descriptor or request format"},
    },
)


def _get_session(repo: SessionRepository, session_id: str) -> EditSession:
    try:
        return repo.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "",
    response_model=SessionStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an Edit Session",
    description="""
    Upload an image and start an editing session on it.

    **Supported formats**: JPEG, PNG, WebP, GIF, AVIF, TIFF
    **Maximum file size**: 10 MB (configurable with `PHOTOPIPE_MAX_UPLOAD_BYTES`)

    The upload becomes both the original and the base image, and history starts
    with a single "Initial image" entry.
    """,
    response_description="State of the new session",
    responses={400: {"description": "Bad Request - Unsupported type, too large, or not an image"}},
)
async def create_session(
    image: UploadFile = File(..., description="Image file to edit"),
    uc: UploadImageUseCase = Depends(get_upload_use_case),
):
    """Validate the upload and open a session."""
    data = await image.read()
    try:
        session = uc.execute(data, image.filename, image.content_type)
    except (ValueError, DecodeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SessionStateResponse.from_session(session)


@router.get(
    "/{session_id}",
    response_model=SessionStateResponse,
    summary="Get Session State",
    description="Current descriptor, history cursor and images of a session. The display image falls back to the base image while no processed output exists.",
)
async def get_session(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    return SessionStateResponse.from_session(_get_session(repo, session_id))


@router.delete(
    "/{session_id}",
    summary="Close a Session",
    description="Drop a session and its images from memory.",
)
async def delete_session(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    try:
        repo.delete(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}


@router.post(
    "/{session_id}/edits",
    response_model=SessionStateResponse,
    summary="Apply an Edit",
    description="""
    Merge a partial descriptor into the session's edits.

    The edit recomposes against the last saved base, clears the processed image
    and appends a history entry (entries after the cursor are discarded).
    An invalid descriptor is rejected and leaves the session untouched.

    **Example Request:**
    ```json
    {"edits": {"brightness": 15, "crop": {"enabled": true, "width": 0.5}}, "action": "Brightness and crop"}
    ```
    """,
)
async def apply_edit(
    session_id: str,
    body: EditRequest,
    repo: SessionRepository = Depends(get_session_repo),
):
    session = _get_session(repo, session_id)
    try:
        session.edit(body.edits, body.action)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SessionStateResponse.from_session(session)


@router.post(
    "/{session_id}/presets/{preset_name}",
    response_model=SessionStateResponse,
    summary="Apply a Filter Preset",
    description="""
    Merge a named preset (see `GET /presets`) into the session's edits.

    Works like an edit whose history label is the preset name. Preset names are
    matched case-insensitively. An unknown preset returns **404**.
    """,
)
async def apply_preset(
    session_id: str,
    preset_name: str,
    repo: SessionRepository = Depends(get_session_repo),
):
    session = _get_session(repo, session_id)
    try:
        preset = get_preset(preset_name)
    except PresetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    session.edit(preset.edits, preset.name)
    return SessionStateResponse.from_session(session)


@router.post(
    "/{session_id}/undo",
    response_model=TransitionResponse,
    summary="Undo",
    description="Move the history cursor back one entry. At the oldest entry this is a reported no-op (`changed: false`).",
)
async def undo(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    session = _get_session(repo, session_id)
    entry = session.undo()
    return TransitionResponse(
        changed=entry is not None,
        action=entry.action if entry else None,
        state=SessionStateResponse.from_session(session),
    )


@router.post(
    "/{session_id}/redo",
    response_model=TransitionResponse,
    summary="Redo",
    description="Move the history cursor forward one entry. At the newest entry this is a reported no-op (`changed: false`).",
)
async def redo(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    session = _get_session(repo, session_id)
    entry = session.redo()
    return TransitionResponse(
        changed=entry is not None,
        action=entry.action if entry else None,
        state=SessionStateResponse.from_session(session),
    )


@router.post(
    "/{session_id}/save",
    response_model=TransitionResponse,
    summary="Save as New Base",
    description="""
    Promote the processed image to the new base image.

    Edits are reset to defaults (the export format is kept) and history collapses
    to a single entry. Returns **409** when there is no processed image yet.
    """,
    responses={409: {"description": "Conflict - Nothing to save"}},
)
async def save(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    session = _get_session(repo, session_id)
    try:
        session.save()
    except NothingToSaveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TransitionResponse(
        changed=True,
        action=session.history[session.history_index].action,
        state=SessionStateResponse.from_session(session),
    )


@router.post(
    "/{session_id}/reset",
    response_model=TransitionResponse,
    summary="Reset All Edits",
    description="Restore default edits against the last saved base. Recorded in history, so it can be undone.",
)
async def reset(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    session = _get_session(repo, session_id)
    session.reset_all()
    return TransitionResponse(
        changed=True,
        action=session.history[session.history_index].action,
        state=SessionStateResponse.from_session(session),
    )


@router.get(
    "/{session_id}/history",
    response_model=HistoryResponse,
    summary="Get Edit History",
    description="All history entries, oldest first, with the cursor position.",
)
async def get_history(session_id: str, repo: SessionRepository = Depends(get_session_repo)):
    return HistoryResponse.from_session(_get_session(repo, session_id))


@router.post(
    "/{session_id}/render",
    response_model=RenderResponse,
    summary="Render the Current Edits",
    description="""
    Schedule a pipeline run for the session's current edits.

    The request waits a debounce (short for live-only edits, longer otherwise).
    A newer render request for the same session cancels one that is still
    waiting (`superseded`). A result whose edits changed while it ran is
    discarded (`stale`). On failure the session keeps showing its base image.
    """,
)
async def render(
    session_id: str,
    repo: SessionRepository = Depends(get_session_repo),
    scheduler: RenderScheduler = Depends(get_render_scheduler),
):
    session = _get_session(repo, session_id)
    outcome = await scheduler.request(session)
    image = outcome.image
    return RenderResponse(
        status=outcome.status,
        revision=outcome.revision,
        image_url=data_url(image.data, image.mime_type) if image else None,
        metadata=ProcessMetadata.from_result(outcome.result) if outcome.result else None,
        error=outcome.error_kind,
        details=outcome.message,
    )


@router.get(
    "/{session_id}/download",
    summary="Download the Edited Image",
    description="""
    Download the processed image as a named file (`<name>-pp-edited.<ext>`).

    Only pipeline output is downloadable: with edits pending and no processed
    image (not rendered yet, or the last render failed) this returns **409**.
    A session without edits downloads its base image.

    The file is re-encoded when its container differs from the export format, or
    through the target-size search when `target_kb` (or the descriptor's
    `downloadTargetKB`) is set for JPEG, WebP or AVIF.
    """,
    response_description="Binary image file",
    responses={
        200: {"content": {"image/*": {}}, "description": "Image file content"},
        409: {"description": "Conflict - No processed image for the current edits"},
    },
)
async def download(
    session_id: str,
    target_kb: int | None = Query(None, ge=1, description="Approximate maximum size in kilobytes"),
    repo: SessionRepository = Depends(get_session_repo),
    uc: DownloadImageUseCase = Depends(get_download_use_case),
):
    session = _get_session(repo, session_id)
    try:
        file = await asyncio.to_thread(uc.execute, session, target_kb)
    except NothingToDownloadError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (DecodeError, EncodeError) as e:
        raise HTTPException(status_code=500, detail=str(e))
    headers = {"Content-Disposition": _content_disposition(file.filename)}
    if file.quality is not None:
        headers["X-Quality-Used"] = str(file.quality)
    return Response(content=file.data, media_type=file.mime_type, headers=headers)


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "image"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
