"""SQLite storage for learned state and the sync queue.

Patterns, preferences and pending cloud operations survive process
restarts here. Queue order is the AUTOINCREMENT ``seq`` column, so
creation order is preserved across restarts.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from dictation_learning.models.learning import (
    LearnedPattern,
    PreferenceType,
    UserPreference,
)
from dictation_learning.models.refinement import RefinementMode
from dictation_learning.models.sync import (
    SyncOperation,
    SyncOperationKind,
    SyncOperationStatus,
)

logger = logging.getLogger(__name__)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class LocalStore:
    """SQLite-backed persistence for the learning engine."""

    def __init__(self, db_path: str) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite file (``~`` is expanded)
        """
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        if self._initialized:
            return

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS learned_patterns (
                    id TEXT PRIMARY KEY,
                    original_phrase TEXT NOT NULL,
                    corrected_phrase TEXT NOT NULL,
                    mode TEXT,
                    occurrence_count INTEGER NOT NULL,
                    confidence REAL NOT NULL,
                    first_seen_at TEXT NOT NULL,
                    last_updated_at TEXT NOT NULL,
                    last_decayed_at TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS user_preferences (
                    id TEXT PRIMARY KEY,
                    preference_type TEXT NOT NULL UNIQUE,
                    value REAL NOT NULL,
                    sample_count INTEGER NOT NULL,
                    last_updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS sync_operations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    next_attempt_at TEXT,
                    last_error TEXT,
                    permanently_failed INTEGER NOT NULL DEFAULT 0
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            await db.commit()

        self._initialized = True
        logger.info(f"Initialized local store at {self.db_path}")

    # =========================================================================
    # Patterns
    # =========================================================================

    async def load_patterns(self) -> list[LearnedPattern]:
        """Load every stored pattern."""
        await self.initialize()

        patterns: list[LearnedPattern] = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM learned_patterns ORDER BY first_seen_at ASC"
            ) as cursor:
                async for row in cursor:
                    patterns.append(LearnedPattern(
                        id=row["id"],
                        original_phrase=row["original_phrase"],
                        corrected_phrase=row["corrected_phrase"],
                        mode=RefinementMode(row["mode"]) if row["mode"] else None,
                        occurrence_count=row["occurrence_count"],
                        confidence=row["confidence"],
                        first_seen_at=_parse_dt(row["first_seen_at"]),
                        last_updated_at=_parse_dt(row["last_updated_at"]),
                        last_decayed_at=_parse_dt(row["last_decayed_at"]),
                    ))
        return patterns

    async def save_pattern(self, pattern: LearnedPattern) -> None:
        """Insert or replace a pattern."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO learned_patterns (
                    id, original_phrase, corrected_phrase, mode,
                    occurrence_count, confidence, first_seen_at, last_updated_at,
                    last_decayed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pattern.id,
                    pattern.original_phrase,
                    pattern.corrected_phrase,
                    pattern.mode.value if pattern.mode else None,
                    pattern.occurrence_count,
                    pattern.confidence,
                    pattern.first_seen_at.isoformat(),
                    pattern.last_updated_at.isoformat(),
                    pattern.last_decayed_at.isoformat() if pattern.last_decayed_at else None,
                ),
            )
            await db.commit()

    async def delete_pattern(self, pattern_id: str) -> None:
        """Remove a pattern by id. Idempotent."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "DELETE FROM learned_patterns WHERE id = ?", (pattern_id,)
            )
            await db.commit()

    async def clear_learning(self) -> None:
        """Delete all patterns, preferences and the session count."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM learned_patterns")
            await db.execute("DELETE FROM user_preferences")
            await db.execute("DELETE FROM meta WHERE key = 'session_count'")
            await db.commit()

    # =========================================================================
    # Preferences
    # =========================================================================

    async def load_preferences(self) -> list[UserPreference]:
        """Load every stored preference."""
        await self.initialize()

        preferences: list[UserPreference] = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM user_preferences") as cursor:
                async for row in cursor:
                    preferences.append(UserPreference(
                        id=row["id"],
                        type=PreferenceType(row["preference_type"]),
                        value=row["value"],
                        sample_count=row["sample_count"],
                        last_updated_at=_parse_dt(row["last_updated_at"]),
                    ))
        return preferences

    async def save_preference(self, preference: UserPreference) -> None:
        """Insert or replace the preference row for its type."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO user_preferences (
                    id, preference_type, value, sample_count, last_updated_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    preference.id,
                    preference.type.value,
                    preference.value,
                    preference.sample_count,
                    preference.last_updated_at.isoformat(),
                ),
            )
            await db.commit()

    # =========================================================================
    # Meta
    # =========================================================================

    async def get_meta(self, key: str, default: str | None = None) -> str | None:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT value FROM meta WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else default

    async def set_meta(self, key: str, value: str) -> None:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (key, value),
            )
            await db.commit()

    # =========================================================================
    # Sync operations
    # =========================================================================

    async def insert_operation(self, op: SyncOperation) -> int:
        """Append an operation to the durable queue.

        Returns:
            The assigned sequence number
        """
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO sync_operations (
                    id, kind, entity_id, payload, status, attempts,
                    created_at, next_attempt_at, last_error, permanently_failed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._operation_values(op),
            )
            await db.commit()
            return cursor.lastrowid

    async def update_operation(self, op: SyncOperation) -> None:
        """Persist status/attempt changes of an operation."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                UPDATE sync_operations
                SET status = ?, attempts = ?, next_attempt_at = ?,
                    last_error = ?, permanently_failed = ?
                WHERE id = ?
                """,
                (
                    op.status.value,
                    op.attempts,
                    op.next_attempt_at.isoformat() if op.next_attempt_at else None,
                    op.last_error,
                    int(op.permanently_failed),
                    op.id,
                ),
            )
            await db.commit()

    async def delete_operation(self, op_id: str) -> None:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM sync_operations WHERE id = ?", (op_id,))
            await db.commit()

    async def clear_operations(self) -> None:
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM sync_operations")
            await db.commit()

    async def load_operations(self) -> list[SyncOperation]:
        """Load queued operations in creation order.

        Operations interrupted while in flight are reset to pending; every
        cloud write is an idempotent upsert or delete, so replaying is safe.
        """
        await self.initialize()

        operations: list[SyncOperation] = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM sync_operations ORDER BY seq ASC"
            ) as cursor:
                async for row in cursor:
                    status = SyncOperationStatus(row["status"])
                    if status == SyncOperationStatus.IN_FLIGHT:
                        status = SyncOperationStatus.PENDING
                    operations.append(SyncOperation(
                        id=row["id"],
                        seq=row["seq"],
                        kind=SyncOperationKind(row["kind"]),
                        entity_id=row["entity_id"],
                        payload=json.loads(row["payload"]),
                        status=status,
                        attempts=row["attempts"],
                        created_at=_parse_dt(row["created_at"]),
                        next_attempt_at=_parse_dt(row["next_attempt_at"]),
                        last_error=row["last_error"],
                        permanently_failed=bool(row["permanently_failed"]),
                    ))
        return operations

    @staticmethod
    def _operation_values(op: SyncOperation) -> tuple[Any, ...]:
        return (
            op.id,
            op.kind.value,
            op.entity_id,
            json.dumps(op.payload),
            op.status.value,
            op.attempts,
            op.created_at.isoformat(),
            op.next_attempt_at.isoformat() if op.next_attempt_at else None,
            op.last_error,
            int(op.permanently_failed),
        )
