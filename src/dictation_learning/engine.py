"""Engine assembly.

``build_engine`` is the one place settings are mapped onto components.
Every component is constructed here and passed to its dependents, so
tests can build the same graph with fakes.
"""

import logging
from typing import Any

from dictation_learning.api.events import EventBus
from dictation_learning.config import Settings
from dictation_learning.db.cloud_store import CloudStore, SupabaseCloudStore
from dictation_learning.db.local_store import LocalStore
from dictation_learning.manager.decision_engine import DecisionEngine
from dictation_learning.manager.pattern_store import PatternStore
from dictation_learning.manager.session_coordinator import SessionCoordinator
from dictation_learning.manager.sync_queue import SyncQueue
from dictation_learning.tools.base import AIProvider, OutputSink

logger = logging.getLogger(__name__)


class LearningEngine:
    """Owns the learning engine's components and their lifecycle."""

    def __init__(
        self,
        local_store: LocalStore,
        sync_queue: SyncQueue,
        pattern_store: PatternStore,
        decision_engine: DecisionEngine,
        coordinator: SessionCoordinator,
        event_bus: EventBus,
    ) -> None:
        self.local_store = local_store
        self.sync_queue = sync_queue
        self.pattern_store = pattern_store
        self.decision_engine = decision_engine
        self.coordinator = coordinator
        self.event_bus = event_bus
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, run_sync_loop: bool = True) -> None:
        """Load durable state and start background sync.

        Args:
            run_sync_loop: Start the periodic flush loop
        """
        if self._started:
            return

        await self.local_store.initialize()
        await self.sync_queue.load()
        await self.pattern_store.load()
        await self.pattern_store.decay_stale()

        if run_sync_loop:
            self.sync_queue.start()
            self.sync_queue.trigger()

        self._started = True
        logger.info("Learning engine started")

    async def stop(self) -> None:
        """Cancel the active session and stop background sync."""
        if not self._started:
            return
        await self.coordinator.shutdown()
        await self.sync_queue.stop()
        self._started = False
        logger.info("Learning engine stopped")

    async def pull_remote(self) -> int:
        """Adopt newer patterns from the cloud store.

        Patterns with local operations still queued are left alone so
        local edits are not overwritten before they are pushed.

        Returns:
            Number of patterns adopted
        """
        remote = await self.sync_queue.fetch_remote_patterns()
        if remote is None:
            return 0
        return await self.pattern_store.merge_remote(
            remote, skip_ids=self.sync_queue.pending_entity_ids()
        )

    def export_data(self) -> dict[str, Any]:
        return self.pattern_store.export_data()

    async def import_data(self, data: dict[str, Any]) -> int:
        count = await self.pattern_store.import_data(data)
        self.sync_queue.trigger()
        return count


def build_cloud_store(settings: Settings) -> CloudStore | None:
    """Create the Supabase store when credentials are configured."""
    if not settings.supabase_url or not settings.supabase_key:
        logger.info("No Supabase credentials configured, running offline-only")
        return None
    return SupabaseCloudStore(settings.supabase_url, settings.supabase_key)


def build_engine(
    settings: Settings,
    provider: AIProvider,
    cloud_store: CloudStore | None = None,
    output: OutputSink | None = None,
) -> LearningEngine:
    """Wire every component from settings.

    Args:
        settings: Application settings
        provider: Transcription and refinement capability
        cloud_store: Remote store (None runs offline-only)
        output: Where finalized text is delivered

    Returns:
        An engine that still needs ``start()``
    """
    local_store = LocalStore(settings.database_path)
    sync_queue = SyncQueue(
        local_store,
        cloud_store,
        base_backoff=settings.sync_base_backoff_seconds,
        max_backoff=settings.sync_max_backoff_seconds,
        max_attempts=settings.sync_max_attempts,
        cloud_timeout=settings.cloud_timeout_seconds,
        interval=settings.sync_interval_seconds,
    )
    pattern_store = PatternStore(
        local_store,
        sync_queue,
        ema_alpha=settings.learning_ema_alpha,
        seed_confidence=settings.learning_seed_confidence,
        staleness_days=settings.learning_staleness_days,
        decay_factor=settings.learning_decay_factor,
        prune_floor=settings.learning_prune_floor,
        ready_min_occurrences=settings.pattern_ready_min_occurrences,
        ready_confidence=settings.pattern_ready_confidence,
    )
    decision_engine = DecisionEngine(
        trivial_change_threshold=settings.decision_trivial_change_threshold,
    )
    event_bus = EventBus(history_ttl=settings.session_history_ttl_seconds)
    coordinator = SessionCoordinator(
        provider,
        decision_engine,
        pattern_store,
        event_bus,
        output,
        transcribe_timeout=settings.transcribe_timeout_seconds,
        refine_timeout=settings.refine_timeout_seconds,
        output_timeout=settings.output_timeout_seconds,
        learning_enabled=settings.learning_enabled,
        apply_learned_patterns=settings.apply_learned_patterns,
    )
    return LearningEngine(
        local_store=local_store,
        sync_queue=sync_queue,
        pattern_store=pattern_store,
        decision_engine=decision_engine,
        coordinator=coordinator,
        event_bus=event_bus,
    )
