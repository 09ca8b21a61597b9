"""Session pipeline: recording -> transcription -> refinement -> decision -> finalize.

Commands come in as method calls, results go out as events on the
EventBus. Whether a session waits for the user is taken from the
DecisionEngine's return value; nothing here polls for a UI surface.
"""

import asyncio
import logging
from datetime import datetime, UTC
from typing import TYPE_CHECKING, Any

from dictation_learning.api.events import (
    EVENT_AWAITING_INPUT,
    EVENT_CANCELLED,
    EVENT_COMPLETED,
    EVENT_ERROR,
    EVENT_PROMPT_DISMISSED,
    EVENT_REFINEMENT_FAILED,
    EVENT_STARTED,
    EVENT_TRANSCRIBED,
    EventBus,
)
from dictation_learning.exceptions import (
    InvalidStateError,
    RefinementFailedError,
    SessionBusyError,
    SessionNotFoundError,
    TranscriptionFailedError,
)
from dictation_learning.models.refinement import LearningOutcome, RefinementMode
from dictation_learning.models.session import DecisionResult, Session, SessionState
from dictation_learning.tools.base import AIProvider, OutputSink

if TYPE_CHECKING:
    from dictation_learning.manager.decision_engine import DecisionEngine
    from dictation_learning.manager.pattern_store import PatternStore

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIBE_TIMEOUT = 60.0
DEFAULT_REFINE_TIMEOUT = 30.0
DEFAULT_OUTPUT_TIMEOUT = 5.0


class SessionCoordinator:
    """Drives one session at a time through the dictation pipeline.

    Guarantees:
    - At most one active session; starting another raises SessionBusyError
    - Finalization happens at most once per session id
    - A cancelled session never finalizes, learns or delivers output
    - At most one interactive prompt is open per session
    """

    def __init__(
        self,
        provider: AIProvider,
        decision_engine: "DecisionEngine",
        pattern_store: "PatternStore",
        event_bus: EventBus,
        output: OutputSink | None = None,
        *,
        transcribe_timeout: float = DEFAULT_TRANSCRIBE_TIMEOUT,
        refine_timeout: float = DEFAULT_REFINE_TIMEOUT,
        output_timeout: float = DEFAULT_OUTPUT_TIMEOUT,
        learning_enabled: bool = True,
        apply_learned_patterns: bool = True,
    ) -> None:
        self._provider = provider
        self._decisions = decision_engine
        self._patterns = pattern_store
        self._events = event_bus
        self._output = output

        self.transcribe_timeout = transcribe_timeout
        self.refine_timeout = refine_timeout
        self.output_timeout = output_timeout
        self.learning_enabled = learning_enabled
        self.apply_learned_patterns = apply_learned_patterns

        self._sessions: dict[str, Session] = {}
        self._active_id: str | None = None
        self._pipeline: asyncio.Task | None = None
        self._prompts: dict[str, LearningOutcome] = {}
        self._finalized: set[str] = set()

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    def get_session(self, session_id: str) -> Session:
        """Return a snapshot of a session.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        return self._require(session_id).model_copy()

    def current_outcome(self, session_id: str) -> LearningOutcome | None:
        """Learning outcome decided for a session, None before the decision."""
        return self._require(session_id).learning_outcome

    def has_open_prompt(self, session_id: str) -> bool:
        return session_id in self._prompts

    def pause_learning(self) -> None:
        self.learning_enabled = False
        logger.info("Learning paused")

    def resume_learning(self) -> None:
        self.learning_enabled = True
        logger.info("Learning resumed")

    def prune_finished(self) -> int:
        """Forget sessions whose event history has expired.

        Returns:
            Number of sessions forgotten
        """
        pruned = 0
        for session_id in self._events.cleanup_stale():
            if session_id == self._active_id:
                continue
            if self._sessions.pop(session_id, None) is not None:
                pruned += 1
            self._finalized.discard(session_id)
            self._prompts.pop(session_id, None)
        if pruned:
            logger.debug(f"Pruned {pruned} finished sessions")
        return pruned

    # =========================================================================
    # Commands
    # =========================================================================

    async def start_session(self, mode: RefinementMode) -> str:
        """Begin recording a new session.

        Returns:
            The new session id

        Raises:
            SessionBusyError: If another session is still active
        """
        if self._active_id is not None:
            raise SessionBusyError(self._active_id)
        self.prune_finished()

        session = Session(mode=mode)
        self._sessions[session.id] = session
        self._active_id = session.id

        logger.info(f"Session {session.id} started ({mode.value})")
        self._emit(session, EVENT_STARTED, mode=mode.value)
        return session.id

    async def stop_session(
        self,
        session_id: str,
        audio: bytes,
        duration: float | None = None,
    ) -> Session:
        """Stop recording and run the pipeline until it finalizes or waits for input.

        Stage failures become state transitions and events; they are not
        raised. Returns when the session is idle again or awaiting the user.

        Args:
            session_id: Session to stop
            audio: Captured audio
            duration: Recording length in seconds (measured if omitted)

        Returns:
            Snapshot of the session after the pipeline ran

        Raises:
            SessionNotFoundError: If the id is unknown
            InvalidStateError: If the session is not recording
        """
        session = self._require(session_id)
        if session.state != SessionState.RECORDING:
            raise InvalidStateError(
                f"Session {session_id} is not recording", state=session.state.value
            )

        if duration is None:
            duration = (datetime.now(UTC) - session.started_at).total_seconds()
        session.duration = duration

        if not audio:
            self._abort(session, TranscriptionFailedError("No audio was recorded"))
            return session.model_copy()

        task = asyncio.create_task(self._run_pipeline(session, audio))
        self._pipeline = task
        try:
            await task
        except asyncio.CancelledError:
            if not session.cancelled:
                raise
        finally:
            if self._pipeline is task:
                self._pipeline = None

        return session.model_copy()

    async def cancel_session(self, session_id: str) -> Session:
        """Force a session back to idle without finalizing it.

        Idempotent for sessions that are already idle.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        session = self._require(session_id)
        if not session.is_active:
            return session.model_copy()
        if session.state == SessionState.FINALIZING:
            logger.debug(f"Session {session_id} is already finalizing, cancel ignored")
            return session.model_copy()

        self._mark_cancelled(session)

        task = self._pipeline
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        return session.model_copy()

    async def submit_edit_review(
        self,
        session_id: str,
        final_text: str,
        skip_learning: bool = False,
    ) -> Session:
        """Finish an edit review with the user's text.

        Raises:
            InvalidStateError: If the session is not awaiting an edit review
        """
        session = self._require_prompt(session_id, LearningOutcome.EDIT_REVIEW)
        learn = not skip_learning and not session.refinement_failed
        await self._finalize(
            session,
            final_text,
            learn_from_edit=learn,
            interactive=True,
        )
        return session.model_copy()

    async def submit_ab_choice(self, session_id: str, chosen_text: str) -> Session:
        """Finish an A/B test with the candidate the user picked.

        Raises:
            InvalidStateError: If the session is not awaiting an A/B choice
            ValueError: If ``chosen_text`` is not one of the candidates
        """
        session = self._require_prompt(session_id, LearningOutcome.AB_TESTING)
        if chosen_text == session.option_a:
            rejected = session.option_b
        elif chosen_text == session.option_b:
            rejected = session.option_a
        else:
            raise ValueError("Chosen text is not one of the offered options")

        await self._finalize(
            session,
            chosen_text,
            ab_rejected=rejected,
            interactive=True,
        )
        return session.model_copy()

    async def skip(self, session_id: str) -> Session:
        """Close the open prompt and deliver the refined text unchanged."""
        session = self._require_prompt(session_id)
        await self._finalize(session, session.refined_text or "", interactive=True)
        return session.model_copy()

    async def shutdown(self) -> None:
        """Cancel whatever session is still active."""
        if self._active_id is not None:
            await self.cancel_session(self._active_id)
        task = self._pipeline
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _run_pipeline(self, session: Session, audio: bytes) -> None:
        try:
            await self._process(session, audio)
        except asyncio.CancelledError:
            self._mark_cancelled(session)
            raise

    async def _process(self, session: Session, audio: bytes) -> None:
        session.state = SessionState.TRANSCRIBING
        logger.debug(f"Session {session.id}: transcribing {len(audio)} bytes")

        try:
            text = await asyncio.wait_for(
                self._provider.transcribe(audio), timeout=self.transcribe_timeout
            )
        except TimeoutError:
            self._abort(session, TranscriptionFailedError("Transcription timed out"))
            return
        except Exception as e:
            self._abort(session, TranscriptionFailedError(str(e) or type(e).__name__))
            return

        if self._is_stale(session):
            return
        if not text or not text.strip():
            self._abort(session, TranscriptionFailedError("Transcription was empty"))
            return

        session.original_text = text
        self._emit(session, EVENT_TRANSCRIBED, text=text)

        session.state = SessionState.REFINING
        refined = await self._refine(session, text)
        if self._is_stale(session):
            return

        session.refined_text = refined
        session.state = SessionState.AWAITING_DECISION

        decision = self._decisions.decide(
            text,
            refined,
            session.mode,
            self.learning_enabled,
            refinement_failed=session.refinement_failed,
        )
        session.learning_outcome = decision.outcome
        logger.debug(f"Session {session.id}: decision {decision.outcome.value}")

        if decision.needs_user_input:
            self._open_prompt(session, decision)
            return

        await self._finalize(session, refined)

    async def _refine(self, session: Session, text: str) -> str:
        """Refine text, falling back to the transcript on any failure."""
        if session.mode == RefinementMode.RAW:
            return text

        try:
            refined = await asyncio.wait_for(
                self._provider.refine(text, session.mode), timeout=self.refine_timeout
            )
            if not refined or not refined.strip():
                raise RefinementFailedError("Refinement was empty")
        except TimeoutError:
            return self._refinement_fallback(
                session, text, RefinementFailedError("Refinement timed out")
            )
        except Exception as e:
            return self._refinement_fallback(session, text, e)

        if self.learning_enabled and self.apply_learned_patterns:
            adjusted = self._patterns.apply_learned(refined, session.mode)
            if adjusted != refined:
                logger.debug(f"Session {session.id}: applied learned corrections")
            refined = adjusted
        return refined

    def _refinement_fallback(self, session: Session, text: str, error: Exception) -> str:
        logger.warning(f"Refinement failed for session {session.id}: {error}")
        session.refinement_failed = True
        self._emit(session, EVENT_REFINEMENT_FAILED, message=str(error))
        return text

    def _open_prompt(self, session: Session, decision: DecisionResult) -> None:
        if session.id in self._prompts:
            self._dismiss_prompt(session)

        session.option_a = decision.option_a
        session.option_b = decision.option_b
        session.state = SessionState.AWAITING_USER_INPUT
        self._prompts[session.id] = decision.outcome

        self._emit(
            session,
            EVENT_AWAITING_INPUT,
            outcome=decision.outcome.value,
            refined_text=session.refined_text,
            option_a=decision.option_a,
            option_b=decision.option_b,
            refinement_failed=session.refinement_failed,
        )

    def _dismiss_prompt(self, session: Session) -> None:
        outcome = self._prompts.pop(session.id, None)
        if outcome is not None:
            self._emit(session, EVENT_PROMPT_DISMISSED, outcome=outcome.value)

    # =========================================================================
    # Finalization
    # =========================================================================

    async def _finalize(
        self,
        session: Session,
        final_text: str,
        *,
        learn_from_edit: bool = False,
        ab_rejected: str | None = None,
        interactive: bool = False,
    ) -> None:
        if session.id in self._finalized:
            raise InvalidStateError(
                f"Session {session.id} was already finalized", state=session.state.value
            )
        self._finalized.add(session.id)
        self._prompts.pop(session.id, None)

        session.state = SessionState.FINALIZING
        session.final_text = final_text

        if self.learning_enabled and interactive:
            await self._record_learning(session, final_text, learn_from_edit, ab_rejected)

        await self._deliver(session, final_text)

        session.finished_at = datetime.now(UTC)
        session.state = SessionState.IDLE
        self._release(session)

        logger.info(f"Session {session.id} completed ({session.learning_outcome})")
        self._emit(
            session,
            EVENT_COMPLETED,
            final_text=final_text,
            outcome=session.learning_outcome.value if session.learning_outcome else None,
        )

    async def _record_learning(
        self,
        session: Session,
        final_text: str,
        learn_from_edit: bool,
        ab_rejected: str | None,
    ) -> None:
        refined = session.refined_text or ""
        try:
            if learn_from_edit and final_text.strip() != refined.strip():
                await self._patterns.learn_from_edit(refined, final_text, session.mode)
            elif ab_rejected is not None:
                await self._patterns.learn_from_ab_choice(final_text, ab_rejected)
            await self._patterns.record_session()
        except Exception as e:
            logger.error(f"Learning failed for session {session.id}: {e}")

    async def _deliver(self, session: Session, text: str) -> None:
        if self._output is None:
            return
        try:
            await asyncio.wait_for(self._output.deliver(text), timeout=self.output_timeout)
        except Exception as e:
            logger.warning(f"Output delivery failed for session {session.id}: {e}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_prompt(
        self,
        session_id: str,
        outcome: LearningOutcome | None = None,
    ) -> Session:
        session = self._require(session_id)
        if session_id in self._finalized:
            raise InvalidStateError(
                f"Session {session_id} was already finalized", state=session.state.value
            )
        if session.state != SessionState.AWAITING_USER_INPUT:
            raise InvalidStateError(
                f"Session {session_id} is not awaiting user input",
                state=session.state.value,
            )
        if outcome is not None and self._prompts.get(session_id) != outcome:
            raise InvalidStateError(
                f"Session {session_id} is not awaiting {outcome.value}",
                state=session.state.value,
            )
        return session

    def _is_stale(self, session: Session) -> bool:
        """Whether results for this session must be discarded."""
        if session.cancelled or session.state == SessionState.IDLE:
            logger.debug(f"Discarding late result for session {session.id}")
            return True
        return False

    def _abort(self, session: Session, error: Exception) -> None:
        logger.warning(f"Session {session.id} aborted: {error}")
        session.error = str(error)
        session.state = SessionState.IDLE
        session.finished_at = datetime.now(UTC)
        self._release(session)
        self._emit(session, EVENT_ERROR, message=str(error))

    def _mark_cancelled(self, session: Session) -> None:
        if session.cancelled:
            return
        session.cancelled = True
        self._dismiss_prompt(session)
        session.state = SessionState.IDLE
        session.finished_at = datetime.now(UTC)
        self._release(session)
        logger.info(f"Session {session.id} cancelled")
        self._emit(session, EVENT_CANCELLED)

    def _release(self, session: Session) -> None:
        if self._active_id == session.id:
            self._active_id = None

    def _emit(self, session: Session, event: str, **data: Any) -> None:
        self._events.emit(
            session.id, {"event": event, "state": session.state.value, **data}
        )
