from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure a pipeline invocation can report.

    `kind` is the stable name surfaced to callers in error envelopes.
    """

    kind = "PipelineError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Descriptor parameter outside its contract range."""

    kind = "ValidationError"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(f"{field}: {message}" if field else message)
        self.field = field
        self.reason = message


class DecodeError(PipelineError):
    kind = "DecodeError"


class CompositeError(PipelineError):
    """Overlay fetch/decode failure. Never fatal for the whole execution."""

    kind = "CompositeError"


class EncodeError(PipelineError):
    kind = "EncodeError"


class PipelineTimeoutError(PipelineError):
    kind = "TimeoutError"


class SessionError(Exception):
    pass


class NothingToSaveError(SessionError):
    def __init__(self) -> None:
        super().__init__("Nothing to save: no processed image for the current edits")


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class NothingToDownloadError(SessionError):
    def __init__(self) -> None:
        super().__init__("No processed image available for download: render the current edits first")


class PresetNotFoundError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown filter preset: {name}")
        self.name = name
