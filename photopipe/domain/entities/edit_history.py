from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.entities.image_edits import ImageEdits


@dataclass(frozen=True)
class EditHistoryEntry:
    action: str  # human readable description, e.g. "Rotated 90°"
    edits: ImageEdits
    base_image: ImageEntity  # always the last saved checkpoint, never a transient output
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
