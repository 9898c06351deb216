import asyncio
import time

from photopipe.application.use_cases.process_image import ProcessImageUseCase, ProcessOutcome
from photopipe.application.use_cases.render_preview import RenderScheduler
from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.errors import DecodeError
from photopipe.domain.services.edit_session import EditSession
from photopipe.domain.services.pipeline_executor import PipelineExecutor


class ExplodingUseCase:
    def execute(self, source, edits):
        raise AssertionError("executor must not run")


class FailingUseCase:
    def execute(self, source, edits):
        return ProcessOutcome.failed(DecodeError("corrupt source"))


class MutatingUseCase:
    """Changes the session while the pipeline is 'running'."""

    def __init__(self, session, inner):
        self.session = session
        self.inner = inner

    def execute(self, source, edits):
        self.session.edit({"contrast": 50}, "changed mid-flight")
        return self.inner.execute(source, edits)


def new_session(png_bytes) -> EditSession:
    return EditSession(ImageEntity.from_bytes(png_bytes, original_filename="a.png"))


def real_use_case() -> ProcessImageUseCase:
    return ProcessImageUseCase(executor=PipelineExecutor(), timeout_s=30)


def test_render_applies_result(png_bytes):
    session = new_session(png_bytes)
    session.edit({"brightness": 10, "exportFormat": "png"}, "Brightness")
    scheduler = RenderScheduler(real_use_case(), live_debounce_ms=0, full_debounce_ms=0)

    outcome = asyncio.run(scheduler.request(session))
    assert outcome.status == "applied"
    assert outcome.result.format == "png"
    assert session.processed_image is outcome.image
    assert session.display_image is outcome.image


def test_no_edits_short_circuits_to_base(png_bytes):
    session = new_session(png_bytes)
    scheduler = RenderScheduler(ExplodingUseCase(), live_debounce_ms=0, full_debounce_ms=0)
    outcome = asyncio.run(scheduler.request(session))
    assert outcome.status == "applied"
    assert outcome.image is session.base_image


def test_newer_request_supersedes_waiting_one(png_bytes):
    session = new_session(png_bytes)
    session.edit({"brightness": 10}, "b")
    scheduler = RenderScheduler(real_use_case(), live_debounce_ms=30, full_debounce_ms=30)

    async def scenario():
        first = asyncio.create_task(scheduler.request(session))
        await asyncio.sleep(0.005)
        session.edit({"brightness": 20}, "b2")
        second = asyncio.create_task(scheduler.request(session))
        return await first, await second

    first, second = asyncio.run(scenario())
    assert first.status == "superseded"
    assert second.status == "applied"
    assert second.revision == session.revision


def test_debounce_delays_execution(png_bytes):
    session = new_session(png_bytes)
    session.edit({"blur": 1}, "blur")
    scheduler = RenderScheduler(real_use_case(), live_debounce_ms=0, full_debounce_ms=80)
    started = time.perf_counter()
    asyncio.run(scheduler.request(session))
    assert time.perf_counter() - started >= 0.08


def test_result_for_outdated_edits_is_stale(png_bytes):
    session = new_session(png_bytes)
    session.edit({"brightness": 10}, "b")
    scheduler = RenderScheduler(MutatingUseCase(session, real_use_case()), live_debounce_ms=0, full_debounce_ms=0)
    outcome = asyncio.run(scheduler.request(session))
    assert outcome.status == "stale"
    assert session.processed_image is None
    assert session.edits.contrast == 50


def test_failure_is_recorded_and_base_shown(png_bytes):
    session = new_session(png_bytes)
    session.edit({"blur": 2}, "blur")
    scheduler = RenderScheduler(FailingUseCase(), live_debounce_ms=0, full_debounce_ms=0)
    outcome = asyncio.run(scheduler.request(session))
    assert outcome.status == "failed"
    assert outcome.error_kind == "DecodeError"
    assert outcome.image is session.base_image
    assert session.last_error.kind == "DecodeError"
    assert session.display_image is session.base_image
