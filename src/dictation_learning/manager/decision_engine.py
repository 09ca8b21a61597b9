"""Decides whether a refinement is worth asking the user about.

The decision is returned, never inferred from whether a prompt appeared:
the coordinator branches on ``DecisionResult.outcome`` directly.
"""

import logging

from dictation_learning.manager.variant_generator import generate_variant
from dictation_learning.models.refinement import LearningOutcome, RefinementMode
from dictation_learning.models.session import DecisionResult

logger = logging.getLogger(__name__)

# Normalized word edit distance below which a change is not worth reviewing
DEFAULT_TRIVIAL_CHANGE_THRESHOLD = 0.1


def word_edit_distance(a: list[str], b: list[str]) -> int:
    """Levenshtein distance over word tokens."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, word_a in enumerate(a, start=1):
        current = [i]
        for j, word_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,                         # deletion
                current[j - 1] + 1,                      # insertion
                previous[j - 1] + (word_a != word_b),    # substitution
            ))
        previous = current
    return previous[-1]


def change_magnitude(original: str, refined: str) -> float:
    """Word-level edit distance normalized by the longer text.

    Returns:
        0.0 for identical token sequences, up to 1.0 for a full rewrite
    """
    a = original.split()
    b = refined.split()
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return word_edit_distance(a, b) / longest


class DecisionEngine:
    """Classifies a refinement as no prompt, edit review, or A/B test.

    Non-trivial changes alternate between edit review and A/B testing
    through a rotation counter so both interaction types get sampled.
    """

    def __init__(
        self,
        trivial_change_threshold: float = DEFAULT_TRIVIAL_CHANGE_THRESHOLD,
    ) -> None:
        self.trivial_change_threshold = trivial_change_threshold
        self._rotation = 0

    @property
    def rotation(self) -> int:
        """Number of prompts handed out so far."""
        return self._rotation

    def decide(
        self,
        original: str,
        refined: str,
        mode: RefinementMode,
        is_learning_enabled: bool,
        refinement_failed: bool = False,
    ) -> DecisionResult:
        """Classify one (original, refined) pair.

        Args:
            original: Raw transcript
            refined: AI refinement (equal to ``original`` on fallback)
            mode: Refinement mode of the session
            is_learning_enabled: Global learning switch
            refinement_failed: The refinement fell back to the transcript

        Returns:
            DecisionResult; A/B results carry both candidates
        """
        if not is_learning_enabled or mode == RefinementMode.RAW or not refined.strip():
            return DecisionResult(outcome=LearningOutcome.NONE)

        if refinement_failed:
            # Only manual cleanup makes sense; variants of raw text are noise
            logger.debug("Refinement failed, offering edit review of the transcript")
            return DecisionResult(outcome=LearningOutcome.EDIT_REVIEW)

        score = change_magnitude(original, refined)
        if score < self.trivial_change_threshold:
            return DecisionResult(outcome=LearningOutcome.NONE, change_score=score)

        use_edit_review = self._rotation % 2 == 0
        self._rotation += 1

        if use_edit_review:
            logger.debug(f"Change score {score:.2f}: edit review")
            return DecisionResult(
                outcome=LearningOutcome.EDIT_REVIEW,
                change_score=score,
            )

        logger.debug(f"Change score {score:.2f}: A/B test")
        return DecisionResult(
            outcome=LearningOutcome.AB_TESTING,
            change_score=score,
            option_a=refined,
            option_b=generate_variant(refined),
        )
