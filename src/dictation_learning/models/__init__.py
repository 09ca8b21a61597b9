"""Pydantic models for the learning engine - the contracts."""

from dictation_learning.models.learning import (
    LearnedPattern,
    LearningQuality,
    PreferenceType,
    UserPreference,
)
from dictation_learning.models.refinement import LearningOutcome, RefinementMode
from dictation_learning.models.session import DecisionResult, Session, SessionState
from dictation_learning.models.sync import (
    ALL_ENTITIES,
    ConnectivityState,
    ConnectivityStatus,
    SyncOperation,
    SyncOperationKind,
    SyncOperationStatus,
)

__all__ = [
    "ALL_ENTITIES",
    "ConnectivityState",
    "ConnectivityStatus",
    "DecisionResult",
    "LearnedPattern",
    "LearningOutcome",
    "LearningQuality",
    "PreferenceType",
    "RefinementMode",
    "Session",
    "SessionState",
    "SyncOperation",
    "SyncOperationKind",
    "SyncOperationStatus",
    "UserPreference",
]
