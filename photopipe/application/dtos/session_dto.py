from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from photopipe.application.dtos.pipeline_dto import ProcessMetadata, data_url
from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.services.edit_session import EditSession
from photopipe.domain.services.live_classifier import css_filter, is_live_only


class ImageInfo(BaseModel):
    """An image held by a session."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Image identifier")
    mime_type: str = Field(..., alias="mimeType", examples=["image/png"])
    format: str | None = Field(None, description="Container format, null if not exportable")
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    size: int = Field(..., description="Encoded size in bytes", ge=0)
    original_filename: str | None = Field(None, alias="originalFilename")

    @classmethod
    def from_entity(cls, image: ImageEntity) -> ImageInfo:
        return cls(
            id=image.id,
            mime_type=image.mime_type,
            format=image.format,
            width=image.width,
            height=image.height,
            size=image.size,
            original_filename=image.original_filename,
        )


class ErrorInfo(BaseModel):
    error: str = Field(..., description="Error kind")
    details: str = Field(..., description="Human readable message")


class SessionStateResponse(BaseModel):
    """Current state of an editing session."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    revision: int = Field(..., description="Monotonic token, bumped whenever base image or edits change")
    edits: dict[str, Any] = Field(..., description="Current descriptor in wire form")
    history_index: int = Field(..., alias="historyIndex", ge=0)
    history_length: int = Field(..., alias="historyLength", ge=1)
    can_undo: bool = Field(..., alias="canUndo")
    can_redo: bool = Field(..., alias="canRedo")
    live_only: bool = Field(..., alias="liveOnly")
    css_filter: str = Field(..., alias="cssFilter")
    original_image: ImageInfo = Field(..., alias="originalImage")
    base_image: ImageInfo = Field(..., alias="baseImage")
    processed_image: ImageInfo | None = Field(None, alias="processedImage")
    display_image_url: str = Field(..., alias="displayImageUrl", description="Processed image, or base image as fallback")
    last_error: ErrorInfo | None = Field(None, alias="lastError")

    @classmethod
    def from_session(cls, session: EditSession) -> SessionStateResponse:
        display = session.display_image
        error = session.last_error
        return cls(
            session_id=session.id,
            revision=session.revision,
            edits=session.edits.to_dict(),
            history_index=session.history_index,
            history_length=len(session.history),
            can_undo=session.can_undo,
            can_redo=session.can_redo,
            live_only=is_live_only(session.edits),
            css_filter=css_filter(session.edits),
            original_image=ImageInfo.from_entity(session.original_image),
            base_image=ImageInfo.from_entity(session.base_image),
            processed_image=ImageInfo.from_entity(session.processed_image) if session.processed_image else None,
            display_image_url=data_url(display.data, display.mime_type),
            last_error=ErrorInfo(error=error.kind, details=error.message) if error else None,
        )


class EditRequest(BaseModel):
    """A partial descriptor merged into the session's current edits."""
    edits: dict[str, Any] = Field(..., description="Partial descriptor in wire form", examples=[{"brightness": 10}])
    action: str = Field("Edit", description="History label for this change", examples=["Adjusted brightness"])


class TransitionResponse(BaseModel):
    """Result of undo, redo, save or reset."""
    changed: bool = Field(..., description="False when the transition was a reported no-op")
    action: str | None = Field(None, description="History label of the entry now at the cursor")
    state: SessionStateResponse


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(..., ge=0)
    action: str
    timestamp: datetime
    base_image_id: str = Field(..., alias="baseImageId")
    edits: dict[str, Any]


class HistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    history_index: int = Field(..., alias="historyIndex")
    entries: list[HistoryEntryResponse]

    @classmethod
    def from_session(cls, session: EditSession) -> HistoryResponse:
        return cls(
            history_index=session.history_index,
            entries=[
                HistoryEntryResponse(
                    index=i,
                    action=entry.action,
                    timestamp=entry.timestamp,
                    base_image_id=entry.base_image.id,
                    edits=entry.edits.to_dict(),
                )
                for i, entry in enumerate(session.history)
            ],
        )


class RenderResponse(BaseModel):
    """Outcome of a scheduled render."""
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(..., description="applied, stale, superseded or failed")
    revision: int
    image_url: str | None = Field(None, alias="imageUrl")
    metadata: ProcessMetadata | None = None
    error: str | None = None
    details: str | None = None
