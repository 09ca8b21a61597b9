"""Style preference scoring.

Scores texts along the four preference dimensions, turns user edits and
A/B choices into preference deltas, and applies strong preferences to
refined text. State lives in the pattern store; everything here is pure.
"""

import re

from dictation_learning.manager.variant_generator import CONTRACTIONS, expand_contractions
from dictation_learning.models.learning import PreferenceType

# A/B choices are a weaker signal than free edits
AB_CHOICE_WEIGHT = 0.5

# Largest weight a single sample can carry in the running average
MAX_SAMPLE_WEIGHT = 0.3

# |value| above which a preference changes refined text
ADJUSTMENT_THRESHOLD = 0.5

FORMAL_INDICATORS = {
    "therefore", "furthermore", "however", "nevertheless", "consequently",
    "accordingly", "regards", "sincerely",
}
CASUAL_INDICATORS = {"gonna", "wanna", "gotta", "yeah", "ok", "okay", "cool", "awesome"}

HEAVY_PUNCTUATION = "!?;:—"

_CONTRACTION_WORDS = {c.lower() for c, _ in CONTRACTIONS}

FORMALIZATIONS = [
    ("gonna", "going to"),
    ("wanna", "want to"),
    ("gotta", "have to"),
    ("yeah", "yes"),
]

CASUALIZATIONS = [
    ("going to", "gonna"),
    ("want to", "wanna"),
    ("have to", "gotta"),
]

FILLER_PHRASES = [
    "I think that",
    "I believe that",
    "it seems like",
    "in my opinion",
    "I would say that",
    "you know",
]


def _words(text: str) -> list[str]:
    return [w.strip(".,!?;:\"()").lower() for w in text.split()]


def assess_formality(text: str) -> float:
    words = _words(text)
    if not words:
        return 0.0
    formal = sum(1 for w in words if w in FORMAL_INDICATORS)
    casual = sum(1 for w in words if w in CASUAL_INDICATORS)
    return (formal - casual) / len(words)


def assess_conciseness(before: str, after: str) -> float:
    """Positive when ``after`` is shorter than ``before``."""
    before_count = len(before.split())
    if before_count == 0:
        return 0.0
    return (before_count - len(after.split())) / before_count


def assess_contractions(text: str) -> float:
    words = [w.replace("’", "'") for w in _words(text)]
    if not words:
        return 0.0
    return sum(1 for w in words if w in _CONTRACTION_WORDS) / len(words)


def assess_punctuation(text: str) -> float:
    word_count = len(text.split())
    if word_count == 0:
        return 0.0
    return sum(1 for ch in text if ch in HEAVY_PUNCTUATION) / word_count


def edit_deltas(refined: str, edited: str) -> dict[PreferenceType, float]:
    """Preference signal from a free edit of the AI refinement."""
    return {
        PreferenceType.FORMALITY: assess_formality(edited) - assess_formality(refined),
        PreferenceType.CONCISENESS: assess_conciseness(refined, edited),
        PreferenceType.CONTRACTIONS: assess_contractions(edited) - assess_contractions(refined),
        PreferenceType.PUNCTUATION: assess_punctuation(edited) - assess_punctuation(refined),
    }


def ab_choice_deltas(selected: str, rejected: str) -> dict[PreferenceType, float]:
    """Preference signal from picking one candidate over the other."""
    return {
        PreferenceType.FORMALITY: (
            assess_formality(selected) - assess_formality(rejected)
        ) * AB_CHOICE_WEIGHT,
        PreferenceType.CONCISENESS: assess_conciseness(rejected, selected) * AB_CHOICE_WEIGHT,
        PreferenceType.CONTRACTIONS: (
            assess_contractions(selected) - assess_contractions(rejected)
        ) * AB_CHOICE_WEIGHT,
    }


def weighted_update(value: float, sample_count: int, delta: float) -> float:
    """Fold one sample into a running average with recency bias.

    The first samples carry weight 1/(n+1); later ones are capped at
    MAX_SAMPLE_WEIGHT. The result is clamped to [-1, 1].
    """
    weight = min(MAX_SAMPLE_WEIGHT, 1.0 / (sample_count + 1))
    updated = value * (1 - weight) + delta * weight
    return max(-1.0, min(1.0, updated))


def _replace_words(text: str, pairs: list[tuple[str, str]]) -> str:
    for source, target in pairs:
        text = re.sub(rf"\b{re.escape(source)}\b", target, text, flags=re.IGNORECASE)
    return text


def _apply_contractions(text: str) -> str:
    pairs = [(expansion, contraction) for contraction, expansion in CONTRACTIONS]
    # Longer expansions first so "will not" is not split by a shorter rule
    pairs.sort(key=lambda p: len(p[0]), reverse=True)
    return _replace_words(text, pairs)


def _remove_fillers(text: str) -> str:
    result = _replace_words(text, [(f, "") for f in FILLER_PHRASES])
    result = re.sub(r"\s+([,.!?;:])", r"\1", result)
    return re.sub(r"\s{2,}", " ", result).strip()


def adjust_for_preferences(text: str, preferences: dict[PreferenceType, float]) -> str:
    """Rewrite text according to strong preferences.

    Args:
        text: Refined text
        preferences: Current preference values by type

    Returns:
        Adjusted text (unchanged when no preference is strong enough)
    """
    result = text

    formality = preferences.get(PreferenceType.FORMALITY, 0.0)
    if formality > ADJUSTMENT_THRESHOLD:
        result = _replace_words(result, FORMALIZATIONS)
    elif formality < -ADJUSTMENT_THRESHOLD:
        result = _replace_words(result, CASUALIZATIONS)

    if preferences.get(PreferenceType.CONCISENESS, 0.0) > ADJUSTMENT_THRESHOLD:
        result = _remove_fillers(result)

    contractions = preferences.get(PreferenceType.CONTRACTIONS, 0.0)
    if contractions > ADJUSTMENT_THRESHOLD:
        result = _apply_contractions(result)
    elif contractions < -ADJUSTMENT_THRESHOLD:
        result = expand_contractions(result)

    return result
