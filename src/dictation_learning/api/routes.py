"""FastAPI routes exposing the engine to the presentation layer."""

import asyncio
import json
import logging
from typing import Annotated, Any, AsyncIterator

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from dictation_learning import __version__
from dictation_learning.api.events import TERMINAL_EVENTS
from dictation_learning.engine import LearningEngine
from dictation_learning.exceptions import InvalidStateError, SessionNotFoundError
from dictation_learning.models.learning import LearnedPattern, UserPreference
from dictation_learning.models.refinement import RefinementMode
from dictation_learning.models.session import Session
from dictation_learning.models.sync import ConnectivityState, SyncOperation

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Request / response models
# =============================================================================


class StartSessionRequest(BaseModel):
    """Request to start recording."""

    mode: RefinementMode = RefinementMode.CLEANUP


class StartSessionResponse(BaseModel):
    session_id: str
    mode: RefinementMode


class EditReviewRequest(BaseModel):
    """The user's final text for an edit review."""

    final_text: str
    skip_learning: bool = False


class ABChoiceRequest(BaseModel):
    """The candidate the user picked in an A/B test."""

    chosen_text: str


class OutcomeResponse(BaseModel):
    session_id: str
    outcome: str | None
    awaiting_input: bool


# =============================================================================
# Dependencies and error mapping
# =============================================================================


def get_engine(request: Request) -> LearningEngine:
    """Engine attached to the app by ``create_app``."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized",
        )
    return engine


EngineDep = Annotated[LearningEngine, Depends(get_engine)]


def _http_error(error: Exception) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(error, SessionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    return HTTPException(status_code=422, detail=str(error))


# =============================================================================
# Health
# =============================================================================


@router.get("/health")
async def health(engine: EngineDep) -> dict[str, Any]:
    """Engine health and sync status."""
    sync = engine.sync_queue.status()
    return {
        "healthy": True,
        "version": __version__,
        "active_session": engine.coordinator.active_session_id,
        "learning_enabled": engine.coordinator.learning_enabled,
        "sync": sync.model_dump(mode="json"),
        "queue": engine.sync_queue.stats(),
    }


# =============================================================================
# Sessions
# =============================================================================


@router.post(
    "/sessions",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_session(
    request: StartSessionRequest, engine: EngineDep
) -> StartSessionResponse:
    """Start recording a new session.

    Raises:
        HTTPException: 409 if another session is still active
    """
    try:
        session_id = await engine.coordinator.start_session(request.mode)
    except InvalidStateError as e:
        raise _http_error(e) from e
    return StartSessionResponse(session_id=session_id, mode=request.mode)


@router.post("/sessions/{session_id}/stop", response_model=Session)
async def stop_session(
    session_id: str,
    request: Request,
    engine: EngineDep,
    duration: float | None = None,
) -> Session:
    """Stop recording. The request body is the captured audio.

    Returns once the session is finalized, awaiting the user, or aborted.
    """
    audio = await request.body()
    try:
        return await engine.coordinator.stop_session(session_id, audio, duration)
    except InvalidStateError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/cancel", response_model=Session)
async def cancel_session(session_id: str, engine: EngineDep) -> Session:
    """Cancel a session from any state without finalizing it."""
    try:
        return await engine.coordinator.cancel_session(session_id)
    except InvalidStateError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/edit-review", response_model=Session)
async def submit_edit_review(
    session_id: str, request: EditReviewRequest, engine: EngineDep
) -> Session:
    """Finish an edit review with the user's final text."""
    try:
        return await engine.coordinator.submit_edit_review(
            session_id, request.final_text, skip_learning=request.skip_learning
        )
    except (InvalidStateError, ValueError) as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/ab-choice", response_model=Session)
async def submit_ab_choice(
    session_id: str, request: ABChoiceRequest, engine: EngineDep
) -> Session:
    """Finish an A/B test with the chosen candidate."""
    try:
        return await engine.coordinator.submit_ab_choice(session_id, request.chosen_text)
    except (InvalidStateError, ValueError) as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/skip", response_model=Session)
async def skip_prompt(session_id: str, engine: EngineDep) -> Session:
    """Dismiss the open prompt and deliver the refined text."""
    try:
        return await engine.coordinator.skip(session_id)
    except InvalidStateError as e:
        raise _http_error(e) from e


@router.get("/sessions/{session_id}", response_model=Session)
async def get_session(session_id: str, engine: EngineDep) -> Session:
    try:
        return engine.coordinator.get_session(session_id)
    except InvalidStateError as e:
        raise _http_error(e) from e


@router.get("/sessions/{session_id}/outcome", response_model=OutcomeResponse)
async def get_outcome(session_id: str, engine: EngineDep) -> OutcomeResponse:
    """Whether the presentation layer should show a prompt, and which."""
    try:
        outcome = engine.coordinator.current_outcome(session_id)
    except InvalidStateError as e:
        raise _http_error(e) from e
    return OutcomeResponse(
        session_id=session_id,
        outcome=outcome.value if outcome else None,
        awaiting_input=engine.coordinator.has_open_prompt(session_id),
    )


@router.get("/sessions/{session_id}/events")
async def stream_session(session_id: str, engine: EngineDep) -> StreamingResponse:
    """Stream session events via Server-Sent Events.

    Late joiners receive the event history first. The stream ends after
    a completed, cancelled or error event.
    """
    try:
        engine.coordinator.get_session(session_id)
    except InvalidStateError as e:
        raise _http_error(e) from e

    event_bus = engine.event_bus
    queue = event_bus.subscribe(session_id)

    async def event_generator() -> AsyncIterator[str]:
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield f"data: {json.dumps(event)}\n\n"
                    if event.get("event") in TERMINAL_EVENTS:
                        break
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    if event_bus.is_finished(session_id):
                        break
        finally:
            event_bus.unsubscribe(session_id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# =============================================================================
# Learned state
# =============================================================================


@router.get("/patterns", response_model=list[LearnedPattern])
async def list_patterns(engine: EngineDep, ready_only: bool = False) -> list[LearnedPattern]:
    """List learned patterns, highest confidence first."""
    if ready_only:
        return engine.pattern_store.ready_patterns()
    return engine.pattern_store.patterns()


@router.delete("/patterns/{pattern_id}")
async def delete_pattern(pattern_id: str, engine: EngineDep) -> dict[str, Any]:
    deleted = await engine.pattern_store.delete(pattern_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Pattern {pattern_id} not found",
        )
    return {"deleted": True, "pattern_id": pattern_id}


@router.get("/preferences", response_model=list[UserPreference])
async def list_preferences(engine: EngineDep) -> list[UserPreference]:
    return engine.pattern_store.preferences()


@router.get("/learning/quality")
async def learning_quality(engine: EngineDep) -> dict[str, Any]:
    store = engine.pattern_store
    return {
        "quality": store.quality().value,
        "session_count": store.session_count,
        "pattern_count": len(store.patterns()),
        "ready_pattern_count": len(store.ready_patterns()),
    }


@router.post("/learning/reset")
async def reset_learning(engine: EngineDep) -> dict[str, Any]:
    """Forget every learned pattern and preference, locally and remotely."""
    await engine.pattern_store.reset_all()
    engine.sync_queue.trigger()
    return {"reset": True}


@router.post("/learning/pause")
async def pause_learning(engine: EngineDep) -> dict[str, Any]:
    engine.coordinator.pause_learning()
    return {"learning_enabled": False}


@router.post("/learning/resume")
async def resume_learning(engine: EngineDep) -> dict[str, Any]:
    engine.coordinator.resume_learning()
    return {"learning_enabled": True}


@router.get("/learning/export")
async def export_learning(engine: EngineDep) -> dict[str, Any]:
    return engine.export_data()


@router.post("/learning/import")
async def import_learning(
    engine: EngineDep,
    data: Annotated[dict[str, Any], Body()],
) -> dict[str, Any]:
    try:
        count = await engine.import_data(data)
    except ValueError as e:
        raise _http_error(e) from e
    return {"imported": count}


# =============================================================================
# Sync
# =============================================================================


@router.get("/sync/status", response_model=ConnectivityState)
async def sync_status(engine: EngineDep) -> ConnectivityState:
    return engine.sync_queue.status()


@router.post("/sync/flush")
async def flush_sync(engine: EngineDep) -> dict[str, Any]:
    """Drain due operations now."""
    result = await engine.sync_queue.flush()
    return {
        **result,
        "status": engine.sync_queue.status().model_dump(mode="json"),
    }


@router.post("/sync/pull")
async def pull_remote(engine: EngineDep) -> dict[str, Any]:
    """Adopt newer patterns from the cloud store."""
    adopted = await engine.pull_remote()
    return {"adopted": adopted}


@router.post("/sync/connectivity-restored", response_model=ConnectivityState)
async def connectivity_restored(engine: EngineDep) -> ConnectivityState:
    """Host reports the network is back. Queued operations are flushed now."""
    engine.sync_queue.notify_connectivity_restored()
    await engine.sync_queue.flush()
    return engine.sync_queue.status()


@router.get("/sync/operations", response_model=list[SyncOperation])
async def list_operations(engine: EngineDep) -> list[SyncOperation]:
    """Queued operations, including permanently failed ones."""
    return engine.sync_queue.operations()


@router.post("/sync/operations/{op_id}/retry", response_model=SyncOperation)
async def retry_operation(op_id: str, engine: EngineDep) -> SyncOperation:
    try:
        return await engine.sync_queue.retry(op_id)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sync operation {op_id} not found",
        ) from e


@router.delete("/sync/operations/{op_id}")
async def discard_operation(op_id: str, engine: EngineDep) -> dict[str, Any]:
    try:
        await engine.sync_queue.discard(op_id)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sync operation {op_id} not found",
        ) from e
    return {"discarded": True, "op_id": op_id}


@router.delete("/sync/operations")
async def clear_operations(engine: EngineDep) -> dict[str, Any]:
    cleared = await engine.sync_queue.clear()
    return {"cleared": cleared}
