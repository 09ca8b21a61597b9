"""Deterministic second candidate for A/B testing.

Rules are applied in order and the first one that changes the text wins:
contraction expansion, filler-word stripping, then a fixed suffix so the
variant always differs from its base.
"""

import re

PLACEHOLDER = "(no text)"
FALLBACK_SUFFIX = " (refined)"

# Order matters: "won't"/"can't" must win over the generic "n't" forms
CONTRACTIONS: list[tuple[str, str]] = [
    ("won't", "will not"),
    ("can't", "cannot"),
    ("shan't", "shall not"),
    ("don't", "do not"),
    ("doesn't", "does not"),
    ("didn't", "did not"),
    ("isn't", "is not"),
    ("aren't", "are not"),
    ("wasn't", "was not"),
    ("weren't", "were not"),
    ("haven't", "have not"),
    ("hasn't", "has not"),
    ("hadn't", "had not"),
    ("shouldn't", "should not"),
    ("wouldn't", "would not"),
    ("couldn't", "could not"),
    ("I'm", "I am"),
    ("you're", "you are"),
    ("we're", "we are"),
    ("they're", "they are"),
    ("it's", "it is"),
    ("that's", "that is"),
    ("there's", "there is"),
    ("let's", "let us"),
    ("I've", "I have"),
    ("you've", "you have"),
    ("we've", "we have"),
    ("they've", "they have"),
    ("I'll", "I will"),
    ("you'll", "you will"),
    ("we'll", "we will"),
    ("they'll", "they will"),
    ("I'd", "I would"),
    ("you'd", "you would"),
]

FILLER_WORDS: list[str] = [
    "you know",
    "I mean",
    "sort of",
    "kind of",
    "um",
    "uh",
    "er",
    "ah",
    "like",
    "basically",
    "actually",
    "literally",
]


def _contraction_regex(contraction: str) -> re.Pattern[str]:
    # Accept straight and curly apostrophes
    body = re.escape(contraction).replace("'", "['’]")
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


_CONTRACTION_RULES = [
    (_contraction_regex(contraction), expansion)
    for contraction, expansion in CONTRACTIONS
]

_FILLER_RULES = [
    re.compile(rf"\b{re.escape(filler)}\b,?", re.IGNORECASE)
    for filler in FILLER_WORDS
]


def _match_case(matched: str, replacement: str) -> str:
    if matched[:1].isupper() and not replacement.startswith("I "):
        return replacement[:1].upper() + replacement[1:]
    return replacement


def expand_contractions(text: str) -> str:
    """Expand every contraction in the table, keeping leading capitals."""
    result = text
    for regex, expansion in _CONTRACTION_RULES:
        result = regex.sub(lambda m, e=expansion: _match_case(m.group(0), e), result)
    return result


def strip_fillers(text: str) -> str:
    """Remove filler words and tidy the whitespace left behind."""
    result = text
    for regex in _FILLER_RULES:
        result = regex.sub("", result)
    result = re.sub(r"\s+([,.!?;:])", r"\1", result)
    result = re.sub(r"^[\s,]+", "", result)
    result = re.sub(r"\s{2,}", " ", result)
    return result.strip()


def generate_variant(base: str) -> str:
    """Produce a second candidate that never equals ``base``.

    Args:
        base: The refined text shown as option A

    Returns:
        The variant shown as option B
    """
    if not base.strip():
        return PLACEHOLDER

    expanded = expand_contractions(base)
    if expanded != base:
        return expanded

    stripped = strip_fillers(base)
    if stripped and stripped != base:
        return stripped

    return base + FALLBACK_SUFFIX
