"""Tests for the learned pattern and preference store."""

from datetime import datetime, timedelta, UTC

import pytest

from dictation_learning.db.local_store import LocalStore
from dictation_learning.manager.pattern_store import PatternStore
from dictation_learning.manager.sync_queue import SyncQueue
from dictation_learning.models.learning import (
    LearnedPattern,
    LearningQuality,
    PreferenceType,
)
from dictation_learning.models.refinement import RefinementMode
from dictation_learning.models.sync import ALL_ENTITIES, SyncOperationKind


def _kinds(queue: SyncQueue) -> list[SyncOperationKind]:
    return [op.kind for op in queue.operations()]


def _reloaded(local_store: LocalStore) -> PatternStore:
    fresh_local = LocalStore(local_store.db_path)
    return PatternStore(fresh_local, SyncQueue(fresh_local))


class TestConstruction:
    """Tests for parameter validation."""

    def test_rejects_bad_alpha(self, local_store, sync_queue):
        with pytest.raises(ValueError):
            PatternStore(local_store, sync_queue, ema_alpha=0.0)

    def test_rejects_bad_decay(self, local_store, sync_queue):
        with pytest.raises(ValueError):
            PatternStore(local_store, sync_queue, decay_factor=1.0)

    def test_rejects_zero_staleness(self, local_store, sync_queue):
        with pytest.raises(ValueError):
            PatternStore(local_store, sync_queue, staleness_days=0)


class TestObserve:
    """Tests for observe."""

    @pytest.mark.asyncio
    async def test_repeat_observation_reinforces(self, pattern_store):
        first = await pattern_store.observe("gonna", "going to", RefinementMode.CLEANUP)
        second = await pattern_store.observe("gonna", "going to", RefinementMode.CLEANUP)

        assert first.occurrence_count == 1
        assert first.confidence == pytest.approx(0.3)
        assert second.id == first.id
        assert second.occurrence_count == 2
        assert second.confidence > first.confidence
        assert second.confidence == pytest.approx(0.3 + 0.2 * 0.7)
        assert len(pattern_store.patterns()) == 1

    @pytest.mark.asyncio
    async def test_confidence_stays_bounded(self, pattern_store):
        previous = 0.0
        for _ in range(40):
            pattern = await pattern_store.observe("teh", "the")
            assert 0.0 <= pattern.confidence <= 1.0
            assert pattern.confidence >= previous
            previous = pattern.confidence

    @pytest.mark.asyncio
    async def test_mode_is_part_of_identity(self, pattern_store):
        await pattern_store.observe("gonna", "going to", RefinementMode.CLEANUP)
        await pattern_store.observe("gonna", "going to", RefinementMode.EMAIL)
        assert len(pattern_store.patterns()) == 2

    @pytest.mark.asyncio
    async def test_rejects_blank_and_unchanged(self, pattern_store):
        with pytest.raises(ValueError):
            await pattern_store.observe("  ", "the")
        with pytest.raises(ValueError):
            await pattern_store.observe("same", "same")

    @pytest.mark.asyncio
    async def test_each_observation_queues_upsert(self, pattern_store, sync_queue):
        pattern = await pattern_store.observe("gonna", "going to")
        await pattern_store.observe("gonna", "going to")

        ops = sync_queue.operations()
        assert [op.kind for op in ops] == [SyncOperationKind.UPSERT_PATTERN] * 2
        assert all(op.entity_id == pattern.id for op in ops)
        assert ops[1].payload["occurrence_count"] == 2

    @pytest.mark.asyncio
    async def test_returns_copy(self, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        pattern.confidence = 1.0
        assert pattern_store.get(pattern.id).confidence == pytest.approx(0.3)


class TestDecay:
    """Tests for staleness decay and pruning."""

    @pytest.mark.asyncio
    async def test_fresh_patterns_untouched(self, pattern_store):
        await pattern_store.observe("gonna", "going to")
        assert await pattern_store.decay_stale() == 0

    @pytest.mark.asyncio
    async def test_decay_never_increases(self, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        start = datetime.now(UTC)

        previous = pattern.confidence
        for window in range(1, 6):
            later = start + timedelta(days=31 * window)
            assert await pattern_store.decay_stale(now=later) == 1
            current = pattern_store.get(pattern.id).confidence
            assert current < previous
            previous = current

    @pytest.mark.asyncio
    async def test_decay_is_idempotent_for_same_time(self, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        later = datetime.now(UTC) + timedelta(days=31)

        assert await pattern_store.decay_stale(now=later) == 1
        decayed = pattern_store.get(pattern.id).confidence
        assert decayed == pytest.approx(0.3 * 0.8)

        for _ in range(12):
            assert await pattern_store.decay_stale(now=later) == 0
        assert pattern_store.get(pattern.id).confidence == decayed

    @pytest.mark.asyncio
    async def test_decay_scales_with_elapsed_windows(self, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        later = datetime.now(UTC) + timedelta(days=95)

        assert await pattern_store.decay_stale(now=later) == 1
        assert pattern_store.get(pattern.id).confidence == pytest.approx(0.3 * 0.8 ** 3)

    @pytest.mark.asyncio
    async def test_decay_window_survives_restart(self, local_store, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        later = datetime.now(UTC) + timedelta(days=31)
        await pattern_store.decay_stale(now=later)

        reloaded = _reloaded(local_store)
        await reloaded.load()
        assert await reloaded.decay_stale(now=later) == 0
        assert reloaded.get(pattern.id).confidence == pytest.approx(0.3 * 0.8)

    @pytest.mark.asyncio
    async def test_decayed_pattern_pruned_on_load(self, local_store, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to")
        later = datetime.now(UTC) + timedelta(days=30 * 9 + 1)
        await pattern_store.decay_stale(now=later)
        assert pattern_store.get(pattern.id).confidence < 0.05

        reloaded = _reloaded(local_store)
        assert await reloaded.load() == 1
        assert reloaded.patterns() == []
        assert _kinds(reloaded._sync)[-1] == SyncOperationKind.DELETE_PATTERN


class TestDeleteAndReset:
    """Tests for delete and reset_all."""

    @pytest.mark.asyncio
    async def test_delete(self, pattern_store, sync_queue):
        pattern = await pattern_store.observe("gonna", "going to")

        assert await pattern_store.delete(pattern.id) is True
        assert pattern_store.patterns() == []
        assert sync_queue.operations()[-1].kind == SyncOperationKind.DELETE_PATTERN
        assert sync_queue.operations()[-1].entity_id == pattern.id

    @pytest.mark.asyncio
    async def test_delete_unknown(self, pattern_store):
        assert await pattern_store.delete("missing") is False

    @pytest.mark.asyncio
    async def test_reset_all(self, local_store, pattern_store, sync_queue):
        await pattern_store.observe("gonna", "going to")
        await pattern_store.update_preferences({PreferenceType.FORMALITY: 0.5})
        await pattern_store.record_session()

        await pattern_store.reset_all()

        assert pattern_store.patterns() == []
        assert pattern_store.preferences() == []
        assert pattern_store.session_count == 0
        last = sync_queue.operations()[-1]
        assert last.kind == SyncOperationKind.RESET_ALL
        assert last.entity_id == ALL_ENTITIES

        reloaded = _reloaded(local_store)
        await reloaded.load()
        assert reloaded.patterns() == []
        assert reloaded.session_count == 0


class TestPreferencesAndQuality:
    """Tests for preferences, session counting and quality."""

    @pytest.mark.asyncio
    async def test_update_preferences(self, pattern_store, sync_queue):
        updated = await pattern_store.update_preferences({PreferenceType.FORMALITY: 1.0})

        assert len(updated) == 1
        assert updated[0].value == pytest.approx(0.3)
        assert updated[0].sample_count == 1
        assert sync_queue.operations()[-1].kind == SyncOperationKind.UPSERT_PREFERENCE

    @pytest.mark.asyncio
    async def test_quality_thresholds(self, pattern_store):
        assert pattern_store.quality() == LearningQuality.MINIMAL

        for _ in range(10):
            await pattern_store.record_session()
        assert pattern_store.quality() == LearningQuality.BASIC

        for _ in range(40):
            await pattern_store.record_session()
        assert pattern_store.quality() == LearningQuality.GOOD

        for _ in range(7):
            await pattern_store.observe("teh", "the")
        assert pattern_store.quality() == LearningQuality.EXCELLENT

    @pytest.mark.asyncio
    async def test_state_survives_reload(self, local_store, pattern_store):
        pattern = await pattern_store.observe("gonna", "going to", RefinementMode.EMAIL)
        await pattern_store.update_preferences({PreferenceType.CONTRACTIONS: -1.0})
        await pattern_store.record_session()

        reloaded = _reloaded(local_store)
        await reloaded.load()

        restored = reloaded.get(pattern.id)
        assert restored is not None
        assert restored.mode == RefinementMode.EMAIL
        assert restored.confidence == pytest.approx(pattern.confidence)
        assert reloaded.preference_values()[PreferenceType.CONTRACTIONS] == pytest.approx(-0.3)
        assert reloaded.session_count == 1


class TestLearningSignals:
    """Tests for learning from edits and A/B choices."""

    @pytest.mark.asyncio
    async def test_learn_from_edit(self, pattern_store):
        observed = await pattern_store.learn_from_edit(
            "I am gonna go", "I am going to go", RefinementMode.CLEANUP
        )

        assert [(p.original_phrase, p.corrected_phrase) for p in observed] == [
            ("gonna", "going to")
        ]
        assert {p.type for p in pattern_store.preferences()} == set(PreferenceType)

    @pytest.mark.asyncio
    async def test_learn_from_ab_choice(self, pattern_store):
        await pattern_store.learn_from_ab_choice("I do not know.", "I don't know.")

        assert pattern_store.patterns() == []
        values = pattern_store.preference_values()
        assert values[PreferenceType.CONTRACTIONS] < 0

    @pytest.mark.asyncio
    async def test_apply_learned(self, pattern_store):
        for _ in range(3):
            await pattern_store.observe("gonna", "going to", RefinementMode.CLEANUP)

        assert pattern_store.apply_learned("I am gonna go", RefinementMode.CLEANUP) == (
            "I am going to go"
        )
        # 0.552 without the same-mode bonus is below the threshold
        assert pattern_store.apply_learned("I am gonna go", RefinementMode.EMAIL) == (
            "I am gonna go"
        )


class TestRemoteAndExport:
    """Tests for merge_remote and export/import."""

    @pytest.mark.asyncio
    async def test_merge_adopts_newer_remote(self, pattern_store):
        local = await pattern_store.observe("gonna", "going to")
        remote = LearnedPattern(
            id=local.id,
            original_phrase="gonna",
            corrected_phrase="going to",
            occurrence_count=9,
            confidence=0.9,
            last_updated_at=local.last_updated_at + timedelta(minutes=5),
        )

        assert await pattern_store.merge_remote([remote]) == 1
        assert pattern_store.get(local.id).occurrence_count == 9

    @pytest.mark.asyncio
    async def test_merge_keeps_newer_local(self, pattern_store):
        local = await pattern_store.observe("gonna", "going to")
        remote = local.model_copy(update={
            "confidence": 0.9,
            "last_updated_at": local.last_updated_at - timedelta(days=1),
        })

        assert await pattern_store.merge_remote([remote]) == 0
        assert pattern_store.get(local.id).confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_merge_skips_pending_ids(self, pattern_store):
        remote = LearnedPattern(original_phrase="teh", corrected_phrase="the")

        assert await pattern_store.merge_remote([remote], skip_ids={remote.id}) == 0
        assert await pattern_store.merge_remote([remote]) == 1
        assert pattern_store.get(remote.id) is not None

    @pytest.mark.asyncio
    async def test_export_import(self, pattern_store, tmp_path):
        pattern = await pattern_store.observe("gonna", "going to")
        await pattern_store.update_preferences({PreferenceType.FORMALITY: 1.0})
        data = pattern_store.export_data()

        other_local = LocalStore(str(tmp_path / "other.db"))
        other_queue = SyncQueue(other_local)
        other = PatternStore(other_local, other_queue)
        await other.load()

        assert await other.import_data(data) == 1
        assert other.get(pattern.id).corrected_phrase == "going to"
        assert other.preference_values()[PreferenceType.FORMALITY] == pytest.approx(0.3)
        assert [op.kind for op in other_queue.operations()] == [
            SyncOperationKind.UPSERT_PATTERN,
            SyncOperationKind.UPSERT_PREFERENCE,
        ]
