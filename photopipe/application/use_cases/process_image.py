from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass

from photopipe.domain.entities.image_edits import ImageEdits
from photopipe.domain.errors import PipelineError, PipelineTimeoutError
from photopipe.domain.services.pipeline_executor import ExecutionResult, PipelineExecutor

logger = logging.getLogger(__name__)

# shared worker pool; a timed-out run keeps its thread until it finishes
_POOL = ThreadPoolExecutor(max_workers=min(8, (os.cpu_count() or 2)), thread_name_prefix="photopipe-pipeline")


@dataclass(frozen=True)
class ProcessOutcome:
    success: bool
    result: ExecutionResult | None = None
    error: PipelineError | None = None
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, result: ExecutionResult) -> ProcessOutcome:
        return cls(success=True, result=result)

    @classmethod
    def failed(cls, error: PipelineError) -> ProcessOutcome:
        return cls(success=False, error=error, error_kind=error.kind, message=error.message)


@dataclass
class ProcessImageUseCase:
    executor: PipelineExecutor
    timeout_s: float = 30.0

    def execute(self, source: bytes, edits: ImageEdits) -> ProcessOutcome:
        """
        Run the pipeline for one (source, descriptor) pair within a time budget.

        Failures come back as a typed outcome instead of an exception, so callers
        can keep showing the base image and let the user carry on editing.
        A timed-out run is abandoned, not retried.
        """
        future = _POOL.submit(self.executor.execute, source, edits)
        try:
            result = future.result(timeout=self.timeout_s)
        except FutureTimeoutError:
            future.cancel()
            error = PipelineTimeoutError(f"Pipeline exceeded {self.timeout_s:g}s")
            logger.warning("Pipeline timed out after %.1fs", self.timeout_s)
            return ProcessOutcome.failed(error)
        except PipelineError as exc:
            logger.warning("Pipeline failed (%s): %s", exc.kind, exc.message)
            return ProcessOutcome.failed(exc)
        except Exception as exc:
            logger.exception("Unexpected pipeline failure")
            error = PipelineError(f"Unexpected pipeline failure: {exc}")
            return ProcessOutcome.failed(error)
        return ProcessOutcome.ok(result)
