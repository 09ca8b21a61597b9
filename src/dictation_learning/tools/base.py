"""Protocols for the external collaborators the engine drives."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from dictation_learning.models.refinement import RefinementMode


@runtime_checkable
class AIProvider(Protocol):
    """Speech-to-text and style refinement capability.

    Both calls are fallible: implementations raise on failure. The
    coordinator bounds each call with a timeout and cancels it when the
    session is cancelled.
    """

    async def transcribe(self, audio: bytes) -> str: ...

    async def refine(self, text: str, mode: RefinementMode) -> str: ...


@runtime_checkable
class OutputSink(Protocol):
    """Delivers finalized text to the user (clipboard, paste at cursor)."""

    async def deliver(self, text: str) -> None: ...
