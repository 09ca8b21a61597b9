"""Tests for LearningEngine lifecycle and remote merge."""

import asyncio
from datetime import datetime, timedelta, UTC

import pytest

from dictation_learning.models.learning import LearnedPattern
from dictation_learning.models.refinement import RefinementMode


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_state_survives_restart(self, make_engine):
        engine = make_engine()
        await engine.start(run_sync_loop=False)
        pattern = await engine.pattern_store.observe("gonna", "going to", RefinementMode.CLEANUP)
        await engine.pattern_store.record_session()
        await engine.stop()

        restarted = make_engine()
        await restarted.start(run_sync_loop=False)
        assert [p.id for p in restarted.pattern_store.patterns()] == [pattern.id]
        assert restarted.pattern_store.session_count == 1
        assert restarted.sync_queue.depth == 1
        await restarted.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, make_engine):
        engine = make_engine()
        await engine.start(run_sync_loop=False)
        await engine.start(run_sync_loop=False)
        assert engine.started
        await engine.stop()
        await engine.stop()
        assert not engine.started

    @pytest.mark.asyncio
    async def test_sync_loop_drains_on_start(self, make_engine, cloud):
        seeded = make_engine()
        await seeded.start(run_sync_loop=False)
        await seeded.pattern_store.observe("teh", "the")
        await seeded.stop()

        engine = make_engine(cloud_store=cloud)
        await engine.start()
        try:
            for _ in range(100):
                if engine.sync_queue.depth == 0:
                    break
                await asyncio.sleep(0.01)
            assert engine.sync_queue.depth == 0
            assert [name for name, _ in cloud.calls] == ["upsert_pattern"]
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_restarts_do_not_compound_decay(self, make_engine):
        seeded = make_engine()
        await seeded.start(run_sync_loop=False)
        stale = datetime.now(UTC) - timedelta(days=31)
        pattern = LearnedPattern(
            original_phrase="alot",
            corrected_phrase="a lot",
            confidence=0.5,
            first_seen_at=stale,
            last_updated_at=stale,
        )
        await seeded.import_data({"patterns": [pattern.model_dump(mode="json")]})
        await seeded.stop()

        for _ in range(3):
            engine = make_engine()
            await engine.start(run_sync_loop=False)
            assert engine.pattern_store.get(pattern.id).confidence == pytest.approx(0.4)
            await engine.stop()


class TestRemote:
    """Tests for pull_remote and import."""

    @pytest.mark.asyncio
    async def test_pull_adopts_newer_remote(self, make_engine, cloud):
        engine = make_engine(cloud_store=cloud)
        await engine.start(run_sync_loop=False)
        local = await engine.pattern_store.observe("teh", "the")
        await engine.sync_queue.flush()

        newer = local.model_copy(
            update={
                "occurrence_count": 5,
                "confidence": 0.9,
                "last_updated_at": local.last_updated_at + timedelta(minutes=1),
            }
        )
        cloud.patterns[newer.id] = newer

        assert await engine.pull_remote() == 1
        assert engine.pattern_store.patterns()[0].occurrence_count == 5
        await engine.stop()

    @pytest.mark.asyncio
    async def test_pull_keeps_pending_local_edits(self, make_engine, cloud):
        engine = make_engine(cloud_store=cloud)
        await engine.start(run_sync_loop=False)
        local = await engine.pattern_store.observe("teh", "the")

        cloud.patterns[local.id] = local.model_copy(
            update={"occurrence_count": 9, "last_updated_at": datetime.now(UTC) + timedelta(hours=1)}
        )

        assert await engine.pull_remote() == 0
        assert engine.pattern_store.patterns()[0].occurrence_count == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_pull_offline(self, make_engine, cloud):
        cloud.offline = True
        engine = make_engine(cloud_store=cloud)
        await engine.start(run_sync_loop=False)

        assert await engine.pull_remote() == 0
        assert engine.sync_queue.status().status.value == "offline"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_pull_without_cloud(self, make_engine):
        engine = make_engine()
        await engine.start(run_sync_loop=False)
        assert await engine.pull_remote() == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_import_queues_sync(self, make_engine):
        engine = make_engine()
        await engine.start(run_sync_loop=False)
        pattern = LearnedPattern(original_phrase="alot", corrected_phrase="a lot")

        count = await engine.import_data({"patterns": [pattern.model_dump(mode="json")]})

        assert count == 1
        assert engine.pattern_store.patterns()[0].id == pattern.id
        assert [op.entity_id for op in engine.sync_queue.operations()] == [pattern.id]
        await engine.stop()
