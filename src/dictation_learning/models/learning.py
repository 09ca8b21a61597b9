"""Learned patterns and user preferences.

Patterns are phrase-level corrections the user applied to AI output.
Preferences are running averages along four style dimensions.
"""

from datetime import datetime, UTC
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from dictation_learning.models.refinement import RefinementMode


class PreferenceType(str, Enum):
    """Style dimension tracked for the user."""

    FORMALITY = "formality"        # formal (+) vs casual (-)
    CONCISENESS = "conciseness"    # concise (+) vs verbose (-)
    CONTRACTIONS = "contractions"  # uses (+) vs avoids (-)
    PUNCTUATION = "punctuation"    # heavy (+) vs light (-)


class LearningQuality(str, Enum):
    """Advisory maturity of the learned model."""

    MINIMAL = "minimal"
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"


class LearnedPattern(BaseModel):
    """A phrase correction observed one or more times."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    original_phrase: str
    corrected_phrase: str
    mode: RefinementMode | None = None

    occurrence_count: int = Field(default=1, ge=1)
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)

    first_seen_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    # End of the last staleness window already decayed
    last_decayed_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str, RefinementMode | None]:
        """Identity used to match repeat observations."""
        return (self.original_phrase, self.corrected_phrase, self.mode)

    def is_ready(self, min_occurrences: int = 3, min_confidence: float = 0.6) -> bool:
        """Whether the pattern is trusted enough to apply automatically."""
        return (
            self.occurrence_count >= min_occurrences
            and self.confidence > min_confidence
        )


class UserPreference(BaseModel):
    """Running weighted average for one style dimension."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: PreferenceType
    value: float = Field(default=0.0, ge=-1.0, le=1.0)
    sample_count: int = Field(default=0, ge=0)
    last_updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
