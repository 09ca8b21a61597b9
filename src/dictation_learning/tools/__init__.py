"""External collaborator protocols."""

from dictation_learning.tools.base import AIProvider, OutputSink

__all__ = ["AIProvider", "OutputSink"]
