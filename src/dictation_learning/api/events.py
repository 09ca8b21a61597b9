"""In-memory per-session event pub/sub for the presentation layer."""

from __future__ import annotations

import asyncio
import time
from typing import Any

# Event type constants
EVENT_STARTED = "started"
EVENT_TRANSCRIBED = "transcribed"
EVENT_REFINEMENT_FAILED = "refinement_failed"
EVENT_AWAITING_INPUT = "awaiting_input"
EVENT_PROMPT_DISMISSED = "prompt_dismissed"
EVENT_COMPLETED = "completed"
EVENT_CANCELLED = "cancelled"
EVENT_ERROR = "error"
TERMINAL_EVENTS = frozenset({EVENT_COMPLETED, EVENT_CANCELLED, EVENT_ERROR})


class EventBus:
    """Broadcasts session events to subscribers.

    Each session keeps its event history so a late subscriber (a prompt
    window opened after the decision) still sees what happened. History
    is dropped ``history_ttl`` seconds after the session's terminal event.
    """

    def __init__(self, history_ttl: float = 300, max_queue_size: int = 100) -> None:
        self._events: dict[str, list[dict[str, Any]]] = {}
        self._subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}
        self._finished_at: dict[str, float] = {}
        self._history_ttl = history_ttl
        self._max_queue_size = max_queue_size

    def emit(self, session_id: str, event: dict[str, Any]) -> None:
        """Record an event and push it to the session's subscribers.

        Slow subscribers lose events rather than blocking the pipeline.
        """
        event = {**event, "session_id": session_id, "timestamp": time.time()}
        self._events.setdefault(session_id, []).append(event)

        if event.get("event") in TERMINAL_EVENTS:
            self._finished_at[session_id] = time.monotonic()

        for queue in self._subscribers.get(session_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                pass

    def subscribe(self, session_id: str) -> asyncio.Queue[dict[str, Any]]:
        """Subscribe to a session. The queue starts with the event history."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue_size)
        for event in self._events.get(session_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                break

        self._subscribers.setdefault(session_id, []).append(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        """Remove a subscriber queue. Idempotent."""
        try:
            self._subscribers.get(session_id, []).remove(queue)
        except ValueError:
            pass

    def history(self, session_id: str) -> list[dict[str, Any]]:
        return list(self._events.get(session_id, []))

    def event_types(self, session_id: str) -> list[str]:
        return [e.get("event") for e in self._events.get(session_id, [])]

    def is_finished(self, session_id: str) -> bool:
        return session_id in self._finished_at

    def cleanup_stale(self) -> list[str]:
        """Drop history of sessions finished longer than the TTL ago.

        Sessions with a subscriber still attached are kept until it leaves.

        Returns:
            Ids of the sessions cleaned up
        """
        now = time.monotonic()
        stale = [
            session_id
            for session_id, finished_at in self._finished_at.items()
            if now - finished_at > self._history_ttl
            and not self._subscribers.get(session_id)
        ]
        for session_id in stale:
            self._events.pop(session_id, None)
            self._subscribers.pop(session_id, None)
            self._finished_at.pop(session_id, None)
        return stale
