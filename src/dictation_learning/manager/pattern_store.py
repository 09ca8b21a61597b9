"""Learned pattern and preference store.

Holds the in-memory learned state, mirrors every change to local SQLite,
and queues the matching cloud mutation. Mutations are serialized behind
one lock; reads return copies and never wait on it.

Local persistence failures are logged and do not roll back memory. Cloud
failures are the sync queue's business.
"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING, Any

from dictation_learning.manager import preference_profiler
from dictation_learning.manager.pattern_matcher import apply_patterns, extract_changes
from dictation_learning.models.learning import (
    LearnedPattern,
    LearningQuality,
    PreferenceType,
    UserPreference,
)
from dictation_learning.models.refinement import RefinementMode
from dictation_learning.models.sync import ALL_ENTITIES, SyncOperation, SyncOperationKind

if TYPE_CHECKING:
    from dictation_learning.db.local_store import LocalStore
    from dictation_learning.manager.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

DEFAULT_EMA_ALPHA = 0.2
DEFAULT_SEED_CONFIDENCE = 0.3
DEFAULT_STALENESS_DAYS = 30
DEFAULT_DECAY_FACTOR = 0.8
DEFAULT_PRUNE_FLOOR = 0.05

# Quality thresholds (sessions, average confidence)
QUALITY_MINIMAL_SESSIONS = 10
QUALITY_BASIC_SESSIONS = 50
QUALITY_EXCELLENT_CONFIDENCE = 0.8

SESSION_COUNT_KEY = "session_count"


class PatternStore:
    """Owns learned patterns and user preferences.

    Provides:
    - Observation of corrections with EMA confidence growth
    - Staleness decay and pruning
    - Deletion and full reset
    - Preference profiling from edits and A/B choices
    - Application of learned corrections to refined text
    """

    def __init__(
        self,
        local_store: "LocalStore",
        sync_queue: "SyncQueue",
        *,
        ema_alpha: float = DEFAULT_EMA_ALPHA,
        seed_confidence: float = DEFAULT_SEED_CONFIDENCE,
        staleness_days: int = DEFAULT_STALENESS_DAYS,
        decay_factor: float = DEFAULT_DECAY_FACTOR,
        prune_floor: float = DEFAULT_PRUNE_FLOOR,
        ready_min_occurrences: int = 3,
        ready_confidence: float = 0.6,
    ) -> None:
        if not 0.0 < ema_alpha <= 1.0:
            raise ValueError("ema_alpha must be in (0, 1]")
        if not 0.0 <= decay_factor < 1.0:
            raise ValueError("decay_factor must be in [0, 1)")
        if staleness_days < 1:
            raise ValueError("staleness_days must be at least 1")

        self._local = local_store
        self._sync = sync_queue
        self.ema_alpha = ema_alpha
        self.seed_confidence = seed_confidence
        self.staleness = timedelta(days=staleness_days)
        self.decay_factor = decay_factor
        self.prune_floor = prune_floor
        self.ready_min_occurrences = ready_min_occurrences
        self.ready_confidence = ready_confidence

        self._patterns: dict[str, LearnedPattern] = {}
        self._by_key: dict[tuple[str, str, RefinementMode | None], str] = {}
        self._preferences: dict[PreferenceType, UserPreference] = {}
        self._session_count = 0
        self._lock = asyncio.Lock()

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> int:
        """Load persisted state, silently pruning decayed patterns.

        Returns:
            Number of patterns pruned
        """
        async with self._lock:
            patterns = await self._local.load_patterns()
            preferences = await self._local.load_preferences()
            count = await self._local.get_meta(SESSION_COUNT_KEY, "0")

            self._patterns.clear()
            self._by_key.clear()
            pruned: list[LearnedPattern] = []
            for pattern in patterns:
                if pattern.confidence < self.prune_floor:
                    pruned.append(pattern)
                    continue
                self._index(pattern)

            self._preferences = {p.type: p for p in preferences}
            self._session_count = int(count or 0)

            for pattern in pruned:
                await self._persist(self._local.delete_pattern(pattern.id), "prune")
                await self._enqueue(SyncOperationKind.DELETE_PATTERN, pattern.id)

        logger.info(
            f"Loaded {len(self._patterns)} patterns, {len(self._preferences)} "
            f"preferences, {self._session_count} sessions ({len(pruned)} pruned)"
        )
        return len(pruned)

    # =========================================================================
    # Patterns
    # =========================================================================

    async def observe(
        self,
        original: str,
        corrected: str,
        mode: RefinementMode | None = None,
    ) -> LearnedPattern:
        """Record one observation of a correction.

        A repeat observation bumps the occurrence count and moves confidence
        toward 1.0 by ``ema_alpha``; a first observation creates the pattern
        at the seed confidence.

        Args:
            original: Phrase as produced by the AI
            corrected: Phrase the user replaced it with
            mode: Refinement mode the correction was made in

        Returns:
            Copy of the updated pattern

        Raises:
            ValueError: If a phrase is blank or both phrases are equal
        """
        if not original.strip() or not corrected.strip():
            raise ValueError("Pattern phrases must not be blank")
        if original == corrected:
            raise ValueError("A correction must change the phrase")

        async with self._lock:
            now = datetime.now(UTC)
            pattern_id = self._by_key.get((original, corrected, mode))

            if pattern_id is not None:
                pattern = self._patterns[pattern_id]
                pattern.occurrence_count += 1
                pattern.confidence = min(
                    1.0,
                    pattern.confidence + self.ema_alpha * (1.0 - pattern.confidence),
                )
                pattern.last_updated_at = now
                logger.debug(
                    f"Reinforced pattern '{original}' -> '{corrected}': "
                    f"count={pattern.occurrence_count}, confidence={pattern.confidence:.3f}"
                )
            else:
                pattern = LearnedPattern(
                    original_phrase=original,
                    corrected_phrase=corrected,
                    mode=mode,
                    confidence=self.seed_confidence,
                    first_seen_at=now,
                    last_updated_at=now,
                )
                self._index(pattern)
                logger.info(f"New pattern '{original}' -> '{corrected}' ({mode})")

            await self._save_pattern(pattern)
            return pattern.model_copy()

    async def decay_stale(self, now: datetime | None = None) -> int:
        """Decay confidence of patterns not observed within the staleness window.

        A pattern loses ``decay_factor`` once per full staleness window
        since it was last observed. Windows already decayed are remembered,
        so calling this again for the same ``now`` changes nothing.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of patterns decayed
        """
        now = now or datetime.now(UTC)
        decayed = 0

        async with self._lock:
            for pattern in self._patterns.values():
                since = pattern.last_updated_at
                if pattern.last_decayed_at and pattern.last_decayed_at > since:
                    since = pattern.last_decayed_at

                windows = int((now - since) / self.staleness)
                if windows < 1:
                    continue

                pattern.last_decayed_at = since + windows * self.staleness
                pattern.confidence = max(
                    0.0, pattern.confidence * self.decay_factor ** windows
                )
                await self._save_pattern(pattern)
                decayed += 1

        if decayed:
            logger.info(f"Decayed {decayed} stale patterns")
        return decayed

    async def delete(self, pattern_id: str) -> bool:
        """Delete a pattern locally and queue the remote delete.

        Returns:
            True if the pattern existed
        """
        async with self._lock:
            pattern = self._patterns.pop(pattern_id, None)
            if pattern is None:
                return False
            self._by_key.pop(pattern.key, None)

            await self._persist(self._local.delete_pattern(pattern_id), "delete pattern")
            await self._enqueue(SyncOperationKind.DELETE_PATTERN, pattern_id)

        logger.info(f"Deleted pattern {pattern_id}")
        return True

    async def reset_all(self) -> None:
        """Forget every pattern, preference and the session count."""
        async with self._lock:
            self._patterns.clear()
            self._by_key.clear()
            self._preferences.clear()
            self._session_count = 0

            await self._persist(self._local.clear_learning(), "reset")
            await self._enqueue(SyncOperationKind.RESET_ALL, ALL_ENTITIES)

        logger.info("Reset all learning data")

    def patterns(self) -> list[LearnedPattern]:
        """List patterns, highest confidence first."""
        ordered = sorted(
            self._patterns.values(), key=lambda p: p.confidence, reverse=True
        )
        return [p.model_copy() for p in ordered]

    def get(self, pattern_id: str) -> LearnedPattern | None:
        pattern = self._patterns.get(pattern_id)
        return pattern.model_copy() if pattern else None

    def ready_patterns(self) -> list[LearnedPattern]:
        return [
            p for p in self.patterns()
            if p.is_ready(self.ready_min_occurrences, self.ready_confidence)
        ]

    # =========================================================================
    # Preferences and sessions
    # =========================================================================

    def preferences(self) -> list[UserPreference]:
        return [p.model_copy() for p in self._preferences.values()]

    def preference_values(self) -> dict[PreferenceType, float]:
        return {t: p.value for t, p in self._preferences.items()}

    async def update_preferences(
        self, deltas: dict[PreferenceType, float]
    ) -> list[UserPreference]:
        """Fold one sample per dimension into the running averages."""
        updated: list[UserPreference] = []

        async with self._lock:
            now = datetime.now(UTC)
            for pref_type, delta in deltas.items():
                pref = self._preferences.get(pref_type)
                if pref is None:
                    pref = UserPreference(type=pref_type)
                    self._preferences[pref_type] = pref

                pref.value = preference_profiler.weighted_update(
                    pref.value, pref.sample_count, delta
                )
                pref.sample_count += 1
                pref.last_updated_at = now

                await self._persist(self._local.save_preference(pref), "save preference")
                await self._enqueue(
                    SyncOperationKind.UPSERT_PREFERENCE,
                    pref.id,
                    pref.model_dump(mode="json"),
                )
                updated.append(pref.model_copy())

        return updated

    @property
    def session_count(self) -> int:
        return self._session_count

    async def record_session(self) -> int:
        """Count one completed learning interaction."""
        async with self._lock:
            self._session_count += 1
            await self._persist(
                self._local.set_meta(SESSION_COUNT_KEY, str(self._session_count)),
                "session count",
            )
            return self._session_count

    def quality(self) -> LearningQuality:
        """Advisory maturity derived from session count and average confidence."""
        if self._session_count < QUALITY_MINIMAL_SESSIONS:
            return LearningQuality.MINIMAL
        if self._session_count < QUALITY_BASIC_SESSIONS:
            return LearningQuality.BASIC

        confidences = [p.confidence for p in self._patterns.values()]
        average = sum(confidences) / len(confidences) if confidences else 0.0
        if average >= QUALITY_EXCELLENT_CONFIDENCE:
            return LearningQuality.EXCELLENT
        return LearningQuality.GOOD

    # =========================================================================
    # Learning signals
    # =========================================================================

    async def learn_from_edit(
        self,
        refined: str,
        final: str,
        mode: RefinementMode,
    ) -> list[LearnedPattern]:
        """Learn from the user's free edit of an AI refinement.

        Returns:
            Patterns observed from the edit
        """
        observed = [
            await self.observe(change.original, change.edited, mode)
            for change in extract_changes(refined, final)
        ]
        await self.update_preferences(preference_profiler.edit_deltas(refined, final))
        return observed

    async def learn_from_ab_choice(self, selected: str, rejected: str) -> None:
        """Learn style preferences from an A/B pick."""
        await self.update_preferences(
            preference_profiler.ab_choice_deltas(selected, rejected)
        )

    def apply_learned(self, text: str, mode: RefinementMode) -> str:
        """Apply ready patterns and strong preferences to refined text."""
        result = apply_patterns(
            text,
            list(self._patterns.values()),
            mode,
            min_occurrences=self.ready_min_occurrences,
            min_confidence=self.ready_confidence,
        )
        return preference_profiler.adjust_for_preferences(
            result, self.preference_values()
        )

    # =========================================================================
    # Remote state, export/import
    # =========================================================================

    async def merge_remote(
        self,
        remote: list[LearnedPattern],
        skip_ids: set[str] | None = None,
    ) -> int:
        """Adopt remote patterns that are newer than the local copy.

        Args:
            remote: Patterns listed from the cloud store
            skip_ids: Ids with local operations still queued (local wins)

        Returns:
            Number of patterns adopted
        """
        skip_ids = skip_ids or set()
        adopted = 0

        async with self._lock:
            for pattern in remote:
                if pattern.id in skip_ids:
                    continue
                local = self._patterns.get(pattern.id)
                if local is None and pattern.key in self._by_key:
                    continue
                if local is not None and local.last_updated_at >= pattern.last_updated_at:
                    continue

                if local is not None:
                    self._by_key.pop(local.key, None)
                self._index(pattern.model_copy())
                await self._persist(self._local.save_pattern(pattern), "merge pattern")
                adopted += 1

        if adopted:
            logger.info(f"Adopted {adopted} remote patterns")
        return adopted

    def export_data(self) -> dict[str, Any]:
        """Export learned state as a JSON-ready dict."""
        return {
            "patterns": [p.model_dump(mode="json") for p in self.patterns()],
            "preferences": [p.model_dump(mode="json") for p in self.preferences()],
            "session_count": self._session_count,
            "exported_at": datetime.now(UTC).isoformat(),
        }

    async def import_data(self, data: dict[str, Any]) -> int:
        """Import exported state, replacing entries with the same id.

        Returns:
            Number of patterns imported
        """
        patterns = [LearnedPattern.model_validate(p) for p in data.get("patterns", [])]
        preferences = [
            UserPreference.model_validate(p) for p in data.get("preferences", [])
        ]

        async with self._lock:
            for pattern in patterns:
                existing_id = self._by_key.get(pattern.key)
                if existing_id is not None and existing_id != pattern.id:
                    self._patterns.pop(existing_id, None)
                    await self._persist(self._local.delete_pattern(existing_id), "import")
                    await self._enqueue(SyncOperationKind.DELETE_PATTERN, existing_id)
                self._index(pattern)
                await self._save_pattern(pattern)

            for pref in preferences:
                self._preferences[pref.type] = pref
                await self._persist(self._local.save_preference(pref), "import")
                await self._enqueue(
                    SyncOperationKind.UPSERT_PREFERENCE,
                    pref.id,
                    pref.model_dump(mode="json"),
                )

        logger.info(f"Imported {len(patterns)} patterns, {len(preferences)} preferences")
        return len(patterns)

    # =========================================================================
    # Internals (callers hold the lock)
    # =========================================================================

    def _index(self, pattern: LearnedPattern) -> None:
        self._patterns[pattern.id] = pattern
        self._by_key[pattern.key] = pattern.id

    async def _save_pattern(self, pattern: LearnedPattern) -> None:
        await self._persist(self._local.save_pattern(pattern), "save pattern")
        await self._enqueue(
            SyncOperationKind.UPSERT_PATTERN,
            pattern.id,
            pattern.model_dump(mode="json"),
        )

    async def _enqueue(
        self,
        kind: SyncOperationKind,
        entity_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self._sync.enqueue(
            SyncOperation(kind=kind, entity_id=entity_id, payload=payload or {})
        )

    async def _persist(self, operation: Awaitable[Any], what: str) -> None:
        try:
            await operation
        except Exception as e:
            logger.error(f"Local persistence failed ({what}): {e}")
