from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from photopipe.domain.entities.edit_history import EditHistoryEntry
from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.errors import NothingToDownloadError, NothingToSaveError, PipelineError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50

INITIAL_ACTION = "Initial image"
SAVE_ACTION = "Saved changes as new base"
RESET_ACTION = "Reset all edits"


@dataclass(frozen=True)
class SessionSnapshot:
    """What a render needs: the revision it belongs to and its inputs."""

    session_id: str
    revision: int
    base_image: ImageEntity
    edits: ImageEdits


class EditSession:
    """
    Owns the mutable state of one editing session.

    - original_image: the first upload, never replaced
    - last_saved: the checkpoint every edit recomposes against
    - base_image: the image the current descriptor applies to
    - processed_image: latest pipeline output for (base_image, edits), or None

    Every transition runs under one re-entrant lock, so a descriptor change and
    its history entry are recorded together. `revision` increases whenever
    (base_image, edits) changes; results for an older revision are dropped.
    """

    def __init__(self, upload: ImageEntity, history_limit: int = HISTORY_LIMIT, session_id: str | None = None) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.id = session_id or uuid.uuid4().hex
        self.history_limit = history_limit
        self.original_image = upload
        self.last_saved = upload
        self.base_image = upload
        self.edits = ImageEdits()
        self.processed_image: ImageEntity | None = None
        self.last_error: PipelineError | None = None
        self.revision = 0
        self.history: list[EditHistoryEntry] = [EditHistoryEntry(INITIAL_ACTION, self.edits, upload)]
        self.history_index = 0
        self._lock = threading.RLock()

    @property
    def display_image(self) -> ImageEntity:
        """The processed output when there is one, otherwise the base image."""
        with self._lock:
            return self.processed_image or self.base_image

    @property
    def can_undo(self) -> bool:
        return self.history_index > 0

    @property
    def can_redo(self) -> bool:
        return self.history_index < len(self.history) - 1

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(self.id, self.revision, self.base_image, self.edits)

    def output_image(self) -> ImageEntity:
        """The image eligible for download: pipeline output only, or the base when nothing is edited."""
        with self._lock:
            if self.processed_image is not None:
                return self.processed_image
            if self.edits.has_edits():
                raise NothingToDownloadError()
            return self.base_image

    # ------------------------------------------------------------ transitions

    def edit(self, partial: Mapping[str, Any], action: str) -> ImageEdits:
        """Merge `partial` into the descriptor and record it. Raises ValidationError before mutating."""
        with self._lock:
            merged = self.edits.merge(partial)
            self._apply(merged, self.last_saved)
            self._append(EditHistoryEntry(action, merged, self.last_saved))
            return merged

    def undo(self) -> EditHistoryEntry | None:
        with self._lock:
            if not self.can_undo:
                logger.info("Undo ignored for session %s: already at the oldest entry", self.id)
                return None
            self.history_index -= 1
            entry = self.history[self.history_index]
            self._apply(entry.edits, entry.base_image)
            return entry

    def redo(self) -> EditHistoryEntry | None:
        with self._lock:
            if not self.can_redo:
                logger.info("Redo ignored for session %s: already at the newest entry", self.id)
                return None
            self.history_index += 1
            entry = self.history[self.history_index]
            self._apply(entry.edits, entry.base_image)
            return entry

    def save(self) -> ImageEntity:
        """Promote the processed image to the new checkpoint and collapse history."""
        with self._lock:
            if self.processed_image is None:
                raise NothingToSaveError()
            saved = self.processed_image
            self.last_saved = saved
            self._apply(self.edits.reset(preserve_export=True), saved)
            self.history = [EditHistoryEntry(SAVE_ACTION, self.edits, saved)]
            self.history_index = 0
            return saved

    def reset_all(self) -> ImageEdits:
        with self._lock:
            edits = self.edits.reset(preserve_export=True)
            self._apply(edits, self.last_saved)
            self._append(EditHistoryEntry(RESET_ACTION, edits, self.last_saved))
            return edits

    def apply_result(self, revision: int, image: ImageEntity) -> bool:
        """Store a pipeline output if it still matches the current revision."""
        with self._lock:
            if revision != self.revision:
                logger.debug("Dropping stale result for session %s (rev %d, current %d)", self.id, revision, self.revision)
                return False
            self.processed_image = image
            self.last_error = None
            return True

    def record_failure(self, revision: int, error: PipelineError) -> bool:
        with self._lock:
            if revision != self.revision:
                return False
            self.processed_image = None
            self.last_error = error
            return True

    # -------------------------------------------------------------- internals

    def _apply(self, edits: ImageEdits, base: ImageEntity) -> None:
        self.edits = edits
        self.base_image = base
        self.processed_image = None
        self.last_error = None
        self.revision += 1

    def _append(self, entry: EditHistoryEntry) -> None:
        del self.history[self.history_index + 1 :]
        self.history.append(entry)
        overflow = len(self.history) - self.history_limit
        if overflow > 0:
            # the cursor is at the newest entry here, so it is never evicted
            del self.history[:overflow]
        self.history_index = len(self.history) - 1
