"""Tests for the A/B variant generator."""

import pytest

from dictation_learning.manager.variant_generator import (
    FALLBACK_SUFFIX,
    PLACEHOLDER,
    expand_contractions,
    generate_variant,
    strip_fillers,
)


class TestExpandContractions:
    """Tests for contraction expansion."""

    def test_expands_contraction(self):
        assert expand_contractions("I don't know") == "I do not know"

    def test_keeps_leading_capital(self):
        assert expand_contractions("Don't stop") == "Do not stop"

    def test_curly_apostrophe(self):
        assert expand_contractions("it’s fine") == "it is fine"

    def test_specific_forms_win(self):
        assert expand_contractions("we won't") == "we will not"
        assert expand_contractions("I can't") == "I cannot"

    def test_pronoun_i_stays_upper(self):
        assert expand_contractions("I'm here") == "I am here"


class TestStripFillers:
    """Tests for filler-word removal."""

    def test_strips_leading_filler(self):
        assert strip_fillers("um hello there") == "hello there"

    def test_strips_filler_with_comma(self):
        assert strip_fillers("So, basically, we ship it.") == "So, we ship it."

    def test_leaves_clean_text(self):
        assert strip_fillers("Ship it today.") == "Ship it today."


class TestGenerateVariant:
    """Tests for generate_variant."""

    def test_prefers_contraction_expansion(self):
        assert generate_variant("I don't um know") == "I do not um know"

    def test_falls_back_to_filler_stripping(self):
        assert generate_variant("um hello there") == "hello there"

    def test_falls_back_to_suffix(self):
        assert generate_variant("Hello world.") == "Hello world." + FALLBACK_SUFFIX

    def test_empty_input_returns_placeholder(self):
        assert generate_variant("") == PLACEHOLDER

    def test_whitespace_input_returns_placeholder(self):
        assert generate_variant("   ") == PLACEHOLDER

    def test_deterministic(self):
        text = "Well, it's kind of done."
        assert generate_variant(text) == generate_variant(text)

    @pytest.mark.parametrize("base", [
        "Hello world.",
        "I don't know",
        "um",
        "uh, like, you know",
        "(no text)",
        "x",
        "Hello world. (refined)",
        "   padded   ",
        "Can't won't shouldn't",
    ])
    def test_variant_never_equals_base(self, base):
        assert generate_variant(base) != base
