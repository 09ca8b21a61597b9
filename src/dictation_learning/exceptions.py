"""Custom exceptions for the dictation learning engine."""

from typing import Any


class LearningEngineError(Exception):
    """Base class for engine errors."""


class InvalidStateError(LearningEngineError):
    """Raised when a command is issued from a state that does not permit it."""

    def __init__(self, message: str, state: Any = None) -> None:
        self.state = state
        super().__init__(message)


class SessionBusyError(InvalidStateError):
    """Raised when a session is started while another one is active."""

    def __init__(self, active_session_id: str) -> None:
        self.active_session_id = active_session_id
        super().__init__(f"Session {active_session_id} is still active")


class SessionNotFoundError(InvalidStateError):
    """Raised when a command references an unknown session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")


class TranscriptionFailedError(LearningEngineError):
    """Transcription failed, timed out, or produced no text."""


class RefinementFailedError(LearningEngineError):
    """Refinement failed or timed out; the pipeline falls back to the transcript."""


class SyncFailedError(LearningEngineError):
    """A queued operation could not be applied to the cloud store.

    ``offline`` is set when the store was unreachable, which says nothing
    about the operation itself.
    """

    def __init__(self, operation_id: str, reason: str, offline: bool = False) -> None:
        self.operation_id = operation_id
        self.reason = reason
        self.offline = offline
        super().__init__(f"Sync operation {operation_id} failed: {reason}")
