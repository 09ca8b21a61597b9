"""Tests for style preference scoring."""

import pytest

from dictation_learning.manager import preference_profiler as profiler
from dictation_learning.models.learning import PreferenceType


class TestAssessments:
    """Tests for the per-dimension scores."""

    def test_formality_formal(self):
        assert profiler.assess_formality("therefore we proceed") == pytest.approx(1 / 3)

    def test_formality_casual(self):
        assert profiler.assess_formality("yeah ok cool") == pytest.approx(-1.0)

    def test_formality_empty(self):
        assert profiler.assess_formality("") == 0.0

    def test_conciseness(self):
        assert profiler.assess_conciseness("one two three four", "one two") == 0.5

    def test_conciseness_longer_is_negative(self):
        assert profiler.assess_conciseness("one two", "one two three four") == -1.0

    def test_contractions(self):
        assert profiler.assess_contractions("I don't know") == pytest.approx(1 / 3)

    def test_punctuation(self):
        assert profiler.assess_punctuation("Wow! Really?") == 1.0


class TestDeltas:
    """Tests for edit and A/B deltas."""

    def test_edit_deltas_cover_all_dimensions(self):
        deltas = profiler.edit_deltas("I do not know.", "I don't know!")
        assert set(deltas) == set(PreferenceType)
        assert deltas[PreferenceType.CONTRACTIONS] > 0
        assert deltas[PreferenceType.PUNCTUATION] > 0

    def test_ab_choice_half_weight(self):
        deltas = profiler.ab_choice_deltas("therefore", "yeah")
        assert PreferenceType.PUNCTUATION not in deltas
        assert deltas[PreferenceType.FORMALITY] == pytest.approx(1.0)


class TestWeightedUpdate:
    """Tests for the running average."""

    def test_first_sample_weight_capped(self):
        assert profiler.weighted_update(0.0, 0, 1.0) == pytest.approx(0.3)

    def test_later_samples_weigh_less(self):
        assert profiler.weighted_update(0.0, 9, 1.0) == pytest.approx(0.1)

    def test_clamped_high(self):
        assert profiler.weighted_update(1.0, 10, 5.0) == 1.0

    def test_clamped_low(self):
        assert profiler.weighted_update(-1.0, 10, -5.0) == -1.0


class TestAdjustForPreferences:
    """Tests for text adjustments driven by strong preferences."""

    def test_neutral_preferences_leave_text(self):
        text = "I'm gonna go"
        assert profiler.adjust_for_preferences(text, {}) == text

    def test_formal(self):
        prefs = {PreferenceType.FORMALITY: 0.8}
        assert profiler.adjust_for_preferences("I'm gonna go", prefs) == "I'm going to go"

    def test_casual(self):
        prefs = {PreferenceType.FORMALITY: -0.8}
        assert profiler.adjust_for_preferences("I am going to go", prefs) == "I am gonna go"

    def test_concise_removes_fillers(self):
        prefs = {PreferenceType.CONCISENESS: 0.8}
        result = profiler.adjust_for_preferences("I think that we should go", prefs)
        assert result == "we should go"

    def test_uses_contractions(self):
        prefs = {PreferenceType.CONTRACTIONS: 0.8}
        assert profiler.adjust_for_preferences("I do not know", prefs) == "I don't know"

    def test_avoids_contractions(self):
        prefs = {PreferenceType.CONTRACTIONS: -0.8}
        assert profiler.adjust_for_preferences("I don't know", prefs) == "I do not know"

    def test_weak_preference_ignored(self):
        prefs = {PreferenceType.CONTRACTIONS: 0.4}
        assert profiler.adjust_for_preferences("I do not know", prefs) == "I do not know"
