"""Learning engine components."""

from dictation_learning.manager.decision_engine import DecisionEngine, change_magnitude
from dictation_learning.manager.pattern_matcher import TextChange, apply_patterns, extract_changes
from dictation_learning.manager.pattern_store import PatternStore
from dictation_learning.manager.session_coordinator import SessionCoordinator
from dictation_learning.manager.sync_queue import SyncQueue
from dictation_learning.manager.variant_generator import generate_variant

__all__ = [
    "apply_patterns",
    "change_magnitude",
    "DecisionEngine",
    "extract_changes",
    "generate_variant",
    "PatternStore",
    "SessionCoordinator",
    "SyncQueue",
    "TextChange",
]
