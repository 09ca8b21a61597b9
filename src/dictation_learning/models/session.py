"""Session state for one recording -> finalization pipeline."""

from datetime import datetime, UTC
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from dictation_learning.models.refinement import LearningOutcome, RefinementMode


class SessionState(str, Enum):
    """Pipeline stage of a session."""

    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    REFINING = "refining"
    AWAITING_DECISION = "awaiting_decision"
    AWAITING_USER_INPUT = "awaiting_user_input"
    FINALIZING = "finalizing"


class DecisionResult(BaseModel):
    """Classification returned by the decision engine."""

    outcome: LearningOutcome
    change_score: float = 0.0

    # Candidates for A/B testing (base = refined text, variant = generated)
    option_a: str | None = None
    option_b: str | None = None

    @property
    def needs_user_input(self) -> bool:
        return self.outcome != LearningOutcome.NONE


class Session(BaseModel):
    """One dictation session, mutated by the coordinator."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    mode: RefinementMode
    state: SessionState = SessionState.RECORDING

    original_text: str | None = None
    refined_text: str | None = None
    final_text: str | None = None

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    duration: float | None = None  # Recording length in seconds

    learning_outcome: LearningOutcome | None = None
    option_a: str | None = None
    option_b: str | None = None

    refinement_failed: bool = False
    cancelled: bool = False
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state != SessionState.IDLE
