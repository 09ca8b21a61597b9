"""Dictation Learning - feedback loop for AI-refined dictation."""

__version__ = "0.1.0"

from dictation_learning.exceptions import (
    InvalidStateError,
    LearningEngineError,
    SessionBusyError,
    SessionNotFoundError,
)

__all__ = [
    "__version__",
    "InvalidStateError",
    "LearningEngineError",
    "SessionBusyError",
    "SessionNotFoundError",
]
