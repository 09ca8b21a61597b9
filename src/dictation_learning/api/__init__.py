"""Outbound surface: event bus and HTTP routes.

The router lives in ``dictation_learning.api.routes``; it is not imported
here so that the engine can use the event bus without loading FastAPI.
"""

from dictation_learning.api.events import TERMINAL_EVENTS, EventBus

__all__ = ["EventBus", "TERMINAL_EVENTS"]
