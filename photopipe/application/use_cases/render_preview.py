from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from photopipe.application.use_cases.process_image import ProcessImageUseCase
from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.services.edit_session import EditSession, SessionSnapshot
from photopipe.domain.services.live_classifier import FULL_DEBOUNCE_MS, LIVE_DEBOUNCE_MS, debounce_ms
from photopipe.domain.services.pipeline_executor import ExecutionResult

logger = logging.getLogger(__name__)

APPLIED = "applied"
STALE = "stale"
SUPERSEDED = "superseded"
FAILED = "failed"


@dataclass(frozen=True)
class RenderOutcome:
    status: str
    revision: int
    image: ImageEntity | None = None
    result: ExecutionResult | None = None
    error_kind: str | None = None
    message: str | None = None


class RenderScheduler:
    """
    Debounced, supersedable pipeline renders for edit sessions.

    A request waits the classifier's debounce before running. A newer request
    for the same session cancels one that is still waiting (it reports
    `superseded`). A run that already started is allowed to finish; the session
    drops its result if the descriptor moved on meanwhile (`stale`).
    """

    def __init__(
        self,
        use_case: ProcessImageUseCase,
        live_debounce_ms: int = LIVE_DEBOUNCE_MS,
        full_debounce_ms: int = FULL_DEBOUNCE_MS,
    ) -> None:
        self.use_case = use_case
        self.live_debounce_ms = live_debounce_ms
        self.full_debounce_ms = full_debounce_ms
        self._waiting: dict[str, asyncio.Task] = {}

    async def request(self, session: EditSession) -> RenderOutcome:
        snapshot = session.snapshot()
        previous = self._waiting.pop(session.id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(self._render(session, snapshot))
        self._waiting[session.id] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._waiting.get(session.id) is task:
                del self._waiting[session.id]

        if task.cancelled():
            logger.debug("Render for session %s rev %d superseded", session.id, snapshot.revision)
            return RenderOutcome(SUPERSEDED, snapshot.revision)
        return task.result()

    async def _render(self, session: EditSession, snapshot: SessionSnapshot) -> RenderOutcome:
        delay = debounce_ms(snapshot.edits, self.live_debounce_ms, self.full_debounce_ms)
        if delay > 0:
            await asyncio.sleep(delay / 1000.0)

        # past the debounce: no longer cancellable by a newer request
        current = asyncio.current_task()
        if self._waiting.get(session.id) is current:
            del self._waiting[session.id]

        if not snapshot.edits.has_edits():
            applied = session.apply_result(snapshot.revision, snapshot.base_image)
            return RenderOutcome(APPLIED if applied else STALE, snapshot.revision, image=snapshot.base_image)

        outcome = await asyncio.to_thread(self.use_case.execute, snapshot.base_image.data, snapshot.edits)
        if not outcome.success:
            recorded = session.record_failure(snapshot.revision, outcome.error)
            return RenderOutcome(
                FAILED if recorded else STALE,
                snapshot.revision,
                image=snapshot.base_image if recorded else None,
                error_kind=outcome.error_kind,
                message=outcome.message,
            )

        result = outcome.result
        image = ImageEntity(
            data=result.data,
            mime_type=result.mime_type,
            format=result.format,
            width=result.width,
            height=result.height,
            original_filename=snapshot.base_image.original_filename,
        )
        if not session.apply_result(snapshot.revision, image):
            logger.debug("Render for session %s rev %d is stale", session.id, snapshot.revision)
            return RenderOutcome(STALE, snapshot.revision, result=result)
        return RenderOutcome(APPLIED, snapshot.revision, image=image, result=result)
