from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from photopipe.application.dtos.pipeline_dto import (
    ClassifyRequest,
    ClassifyResponse,
    ProcessErrorResponse,
    ProcessImageResponse,
    PresetListResponse,
    PresetResponse,
    ProcessMetadata,
    data_url,
)
from photopipe.application.use_cases.process_image import ProcessImageUseCase
from photopipe.application.use_cases.upload_image import UploadRejectedError, inspect_upload, validate_upload
from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.errors import DecodeError, ValidationError
from photopipe.domain.services.filter_presets import FILTER_PRESETS
from photopipe.domain.services.live_classifier import css_filter, debounce_ms, is_live_only
from photopipe.infrastructure.api.dependencies import get_app_settings, get_process_use_case
from photopipe.infrastructure.settings import Settings

router = APIRouter(
    tags=["Image Processing"],
    responses={
        400: {"model": ProcessErrorResponse, "description": "Bad Request - Rejected upload or undecodable image"},
        422: {"model": ProcessErrorResponse, "description": "Validation Error - Descriptor out of range"},
        500: {"model": ProcessErrorResponse, "description": "Encoder failure"},
        504: {"model": ProcessErrorResponse, "description": "Pipeline exceeded its time budget"},
    },
)

# error kind -> HTTP status
ERROR_STATUS = {
    "UploadRejected": 400,
    "DecodeError": 400,
    "ValidationError": 422,
    "EncodeError": 500,
    "TimeoutError": 504,
}


def _error(kind: str, details: str) -> JSONResponse:
    body = ProcessErrorResponse(error=kind, details=details)
    return JSONResponse(status_code=ERROR_STATUS.get(kind, 500), content=body.model_dump())


def parse_edits(raw: str | None) -> ImageEdits:
    """Decode the JSON `edits` form field into a validated descriptor."""
    if raw is None or not raw.strip():
        return ImageEdits()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"edits is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("edits must be a JSON object")
    return ImageEdits.from_dict(payload)


@router.post(
    "/process-image",
    response_model=ProcessImageResponse,
    summary="Run the Edit Pipeline",
    description="""
    Apply an edit descriptor to an uploaded image and return the result.

    **Form fields:**
    - `image` - the source file (JPEG, PNG, WebP, GIF, AVIF or TIFF, 10 MB max)
    - `edits` - the descriptor as a JSON string, camelCase keys, missing keys take defaults

    **Operation order** is fixed: auto-orient, rotate (multiples of 90), flips, affine,
    crop, extend, trim, resize, colorspace, gamma, normalize, CLAHE, linear, modulate
    (or the legacy brightness/contrast/saturation/hue scalars), tint, threshold, negate,
    grayscale, blur, median, sharpen, convolve, composite, encode.

    **Composite failures are not fatal:** an overlay that cannot be fetched or decoded
    is skipped and listed in `metadata.skippedSteps`.

    **Example edits:**
    ```json
    {"rotation": 90, "crop": {"x": 0.25, "y": 0.25, "width": 0.5, "height": 0.5, "enabled": true},
     "exportFormat": "jpeg", "quality": 85}
    ```

    **Response**: the output as a data URL plus format, sizes, timing and quality used
    """,
    response_description="Processed image as a data URL with metadata",
)
async def process_image(
    image: UploadFile = File(..., description="Source image file"),
    edits: str = Form("{}", description="Edit descriptor as a JSON string"),
    settings: Settings = Depends(get_app_settings),
    uc: ProcessImageUseCase = Depends(get_process_use_case),
):
    """Run the full pipeline on one upload. Failures come back as an error envelope."""
    data = await image.read()
    try:
        validate_upload(data, image.content_type, settings.max_upload_bytes)
        inspect_upload(data, image.filename)
    except UploadRejectedError as exc:
        return _error("UploadRejected", str(exc))
    except DecodeError as exc:
        return _error(exc.kind, exc.message)
    try:
        descriptor = parse_edits(edits)
    except ValidationError as exc:
        return _error(exc.kind, exc.message)

    outcome = await asyncio.to_thread(uc.execute, data, descriptor)
    if not outcome.success:
        return _error(outcome.error_kind or "PipelineError", outcome.message or "Pipeline failed")

    result = outcome.result
    return ProcessImageResponse(
        image_url=data_url(result.data, result.mime_type),
        metadata=ProcessMetadata.from_result(result),
    )


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    summary="Classify an Edit for Live Preview",
    description="""
    Decide whether a descriptor can be previewed with a CSS filter.

    Only brightness, contrast, saturation and grayscale qualify. Anything else,
    including hue, needs the full pipeline. The response carries the debounce a
    client should wait before requesting the authoritative render, and the CSS
    filter string for the cheap preview (`none` when not live-only).
    """,
    response_description="Live-only flag, debounce interval and CSS filter",
)
async def classify(body: ClassifyRequest, settings: Settings = Depends(get_app_settings)):
    """Classify a descriptor. The CSS preview is never persisted."""
    try:
        descriptor = ImageEdits.from_dict(body.edits)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ClassifyResponse(
        live_only=is_live_only(descriptor),
        debounce_ms=debounce_ms(descriptor, settings.live_debounce_ms, settings.full_debounce_ms),
        css_filter=css_filter(descriptor),
    )


@router.get(
    "/presets",
    response_model=PresetListResponse,
    summary="List Filter Presets",
    description="""
    Named filter presets, in display order.

    Each preset is a partial descriptor over brightness, contrast, saturation and
    grayscale, so every preset except `None` can be previewed with its CSS filter.
    Apply one to a session with `POST /sessions/{id}/presets/{name}`.
    """,
)
async def list_presets():
    presets = []
    for preset in FILTER_PRESETS:
        descriptor = preset.descriptor()
        presets.append(
            PresetResponse(
                name=preset.name,
                edits=dict(preset.edits),
                live_only=is_live_only(descriptor),
                css_filter=css_filter(descriptor),
            )
        )
    return PresetListResponse(presets=presets)
