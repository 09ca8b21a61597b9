"""Phrase-level change extraction and pattern application."""

import difflib
import logging
import re
import string
from dataclasses import dataclass

from dictation_learning.models.learning import LearnedPattern
from dictation_learning.models.refinement import RefinementMode

logger = logging.getLogger(__name__)

# Longest phrase (in words, per side) recorded as a pattern
MAX_PHRASE_WORDS = 3

# Extra effective confidence for patterns learned in the same mode
SAME_MODE_BONUS = 0.1

# Effective confidence required before a pattern is applied
APPLY_THRESHOLD = 0.6


@dataclass(frozen=True)
class TextChange:
    """A replacement the user made to the AI refinement."""

    original: str
    edited: str

    @property
    def is_significant(self) -> bool:
        """Ignore tiny edits, case-only edits and punctuation-only edits."""
        return (
            len(self.original) > 2
            and len(self.edited) > 2
            and self.original.lower() != self.edited.lower()
            and not _is_punctuation_only(self.original)
            and not _is_punctuation_only(self.edited)
        )


def _is_punctuation_only(text: str) -> bool:
    return all(ch in string.punctuation or ch.isspace() for ch in text)


def extract_changes(original: str, edited: str) -> list[TextChange]:
    """Find short phrase replacements between two versions of a text.

    Args:
        original: Text before the user's edit (the AI refinement)
        edited: Text the user settled on

    Returns:
        Significant replacements of at most MAX_PHRASE_WORDS words per side,
        in order of appearance
    """
    original_words = original.split()
    edited_words = edited.split()

    matcher = difflib.SequenceMatcher(a=original_words, b=edited_words, autojunk=False)

    changes: list[TextChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag != "replace":
            continue
        if i2 - i1 > MAX_PHRASE_WORDS or j2 - j1 > MAX_PHRASE_WORDS:
            continue
        change = TextChange(
            original=" ".join(original_words[i1:i2]),
            edited=" ".join(edited_words[j1:j2]),
        )
        if change.is_significant:
            changes.append(change)

    return changes


def apply_patterns(
    text: str,
    patterns: list[LearnedPattern],
    mode: RefinementMode,
    min_occurrences: int = 3,
    min_confidence: float = APPLY_THRESHOLD,
) -> str:
    """Apply ready patterns to a refined text.

    Patterns are tried highest confidence first. Same-mode patterns get a
    small confidence bonus. Replacement is case-insensitive and limited to
    whole words.

    Args:
        text: The refined text
        patterns: Candidate patterns
        mode: The session's refinement mode
        min_occurrences: Occurrences needed before a pattern is trusted
        min_confidence: Effective confidence needed to apply

    Returns:
        The text with learned corrections applied
    """
    result = text
    ordered = sorted(patterns, key=lambda p: p.confidence, reverse=True)

    for pattern in ordered:
        if pattern.occurrence_count < min_occurrences:
            continue

        bonus = SAME_MODE_BONUS if pattern.mode == mode else 0.0
        effective = min(1.0, pattern.confidence + bonus)
        if effective <= min_confidence:
            continue

        regex = re.compile(
            rf"(?<!\w){re.escape(pattern.original_phrase)}(?!\w)", re.IGNORECASE
        )
        updated = regex.sub(lambda _m, c=pattern.corrected_phrase: c, result)
        if updated != result:
            logger.debug(
                f"Applied pattern '{pattern.original_phrase}' -> "
                f"'{pattern.corrected_phrase}' ({effective:.2f})"
            )
        result = updated

    return result
