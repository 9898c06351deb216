from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from photopipe.domain.services.pipeline_executor import ExecutionResult


def data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ProcessMetadata(BaseModel):
    """Metadata of a pipeline output."""
    model_config = ConfigDict(populate_by_name=True)

    format: str = Field(..., description="Resolved export format", examples=["jpeg"])
    size: int = Field(..., description="Encoded output size in bytes", ge=0)
    original_size: int = Field(..., alias="originalSize", description="Source size in bytes", ge=0)
    processing_time: float = Field(..., alias="processingTime", description="Pipeline wall time in milliseconds", ge=0)
    quality: int | None = Field(None, description="Quality used by the encoder, null for png and gif")
    width: int = Field(..., description="Output width in pixels", gt=0)
    height: int = Field(..., description="Output height in pixels", gt=0)
    skipped_steps: list[str] = Field(
        default_factory=list,
        alias="skippedSteps",
        description="Steps skipped without failing the run, e.g. an unreachable composite overlay",
    )

    @classmethod
    def from_result(cls, result: ExecutionResult) -> ProcessMetadata:
        return cls(
            format=result.format,
            size=result.size_bytes,
            original_size=result.original_size_bytes,
            processing_time=result.processing_time_ms,
            quality=result.quality_used,
            width=result.width,
            height=result.height,
            skipped_steps=list(result.skipped_steps),
        )


class ProcessImageResponse(BaseModel):
    """Successful pipeline invocation."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Always true for this model")
    image_url: str = Field(..., alias="imageUrl", description="Output image as a base64 data URL")
    metadata: ProcessMetadata


class ProcessErrorResponse(BaseModel):
    """Failed pipeline invocation."""
    success: bool = Field(False, description="Always false for this model")
    error: str = Field(..., description="Error kind", examples=["ValidationError"])
    details: str = Field(..., description="Human readable message")


class ClassifyRequest(BaseModel):
    """Descriptor to classify, in its camelCase wire form."""
    edits: dict[str, Any] = Field(default_factory=dict, description="Partial or full edit descriptor")


class ClassifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    live_only: bool = Field(..., alias="liveOnly", description="Whether a CSS filter can preview the edit")
    debounce_ms: int = Field(..., alias="debounceMs", description="Delay before the full pipeline should run")
    css_filter: str = Field(..., alias="cssFilter", description="CSS filter approximation, or 'none'")


class PresetResponse(BaseModel):
    """A named filter preset and how it previews."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., examples=["Noir"])
    edits: dict[str, Any] = Field(..., description="Partial descriptor merged when the preset is applied")
    live_only: bool = Field(..., alias="liveOnly")
    css_filter: str = Field(..., alias="cssFilter", examples=["brightness(95%) contrast(130%) grayscale(100%)"])


class PresetListResponse(BaseModel):
    presets: list[PresetResponse]
