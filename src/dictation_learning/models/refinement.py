"""Refinement modes and learning outcomes."""

from enum import Enum


class RefinementMode(str, Enum):
    """Style applied by the AI provider when refining a transcript."""

    RAW = "raw"              # No AI processing - exactly what was said
    CLEANUP = "cleanup"      # Remove filler words, fix grammar
    EMAIL = "email"          # Professional email formatting
    MESSAGING = "messaging"  # Concise and casual


class LearningOutcome(str, Enum):
    """What the engine asks of the user after a refinement."""

    NONE = "none"                # No prompt, finalize immediately
    EDIT_REVIEW = "edit_review"  # Show refined text for free editing
    AB_TESTING = "ab_testing"    # Show two candidates, user picks one
