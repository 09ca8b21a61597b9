"""Cloud store capability and its Supabase implementation.

Only the sync queue writes through this interface. Reads
(``list_patterns``) are used for pulling remote state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, UTC
from typing import Any, Protocol, runtime_checkable

from supabase import Client, create_client

from dictation_learning.models.learning import LearnedPattern, UserPreference

logger = logging.getLogger(__name__)

PATTERNS_TABLE = "learned_patterns"
PREFERENCES_TABLE = "user_preferences"


@runtime_checkable
class CloudStore(Protocol):
    """Remote store for learned state. Every call may raise."""

    async def upsert_pattern(self, pattern: LearnedPattern) -> None: ...

    async def upsert_preference(self, preference: UserPreference) -> None: ...

    async def delete_pattern(self, pattern_id: str) -> None: ...

    async def reset_all(self) -> None: ...

    async def list_patterns(self) -> list[LearnedPattern]: ...

    async def health_check(self) -> bool: ...


def pattern_to_row(pattern: LearnedPattern) -> dict[str, Any]:
    """Map a pattern onto the ``learned_patterns`` table columns."""
    return {
        "id": pattern.id,
        "original_phrase": pattern.original_phrase,
        "corrected_phrase": pattern.corrected_phrase,
        "refinement_mode": pattern.mode.value if pattern.mode else None,
        "occurrence_count": pattern.occurrence_count,
        "confidence": round(pattern.confidence, 4),
        "first_seen": pattern.first_seen_at.isoformat(),
        "last_seen": pattern.last_updated_at.isoformat(),
        "is_active": True,
    }


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def row_to_pattern(row: dict[str, Any]) -> LearnedPattern:
    """Build a pattern from a ``learned_patterns`` row."""
    return LearnedPattern(
        id=str(row["id"]),
        original_phrase=row["original_phrase"],
        corrected_phrase=row["corrected_phrase"],
        mode=row.get("refinement_mode"),
        occurrence_count=row.get("occurrence_count", 1),
        confidence=float(row.get("confidence", 0.5)),
        first_seen_at=_parse_timestamp(row["first_seen"]),
        last_updated_at=_parse_timestamp(row["last_seen"]),
    )


class SupabaseCloudStore:
    """Cloud store backed by Supabase tables.

    The supabase client is synchronous; calls run in a worker thread so a
    slow network never blocks the session pipeline.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        client: Client | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            url: Supabase project URL
            key: Supabase API key
            client: Pre-built client (takes precedence over url/key)
        """
        if client is None:
            if not url or not key:
                raise ValueError("Supabase url and key are required")
            client = create_client(url, key)
        self.client: Client = client

    async def upsert_pattern(self, pattern: LearnedPattern) -> None:
        row = pattern_to_row(pattern)
        await asyncio.to_thread(
            lambda: self.client.table(PATTERNS_TABLE)
            .upsert(row, on_conflict="id")
            .execute()
        )
        logger.debug(f"Upserted pattern {pattern.id}")

    async def upsert_preference(self, preference: UserPreference) -> None:
        row = {
            "id": preference.id,
            "preference_type": preference.type.value,
            "value": round(preference.value, 2),
            "sample_count": preference.sample_count,
            "last_updated": preference.last_updated_at.isoformat(),
        }
        await asyncio.to_thread(
            lambda: self.client.table(PREFERENCES_TABLE)
            .upsert(row, on_conflict="id")
            .execute()
        )
        logger.debug(f"Upserted preference {preference.type.value}")

    async def delete_pattern(self, pattern_id: str) -> None:
        await asyncio.to_thread(
            lambda: self.client.table(PATTERNS_TABLE)
            .delete()
            .eq("id", pattern_id)
            .execute()
        )
        logger.debug(f"Deleted pattern {pattern_id}")

    async def reset_all(self) -> None:
        """Delete every pattern and preference row.

        PostgREST refuses an unfiltered delete; ``id`` is a UUID primary
        key, so "id is not null" matches every row.
        """

        def _reset() -> None:
            for table in (PATTERNS_TABLE, PREFERENCES_TABLE):
                self.client.table(table).delete().not_.is_("id", "null").execute()

        await asyncio.to_thread(_reset)
        logger.info("Cleared all remote learning data")

    async def list_patterns(self) -> list[LearnedPattern]:
        result = await asyncio.to_thread(
            lambda: self.client.table(PATTERNS_TABLE)
            .select("*")
            .eq("is_active", True)
            .order("confidence", desc=True)
            .execute()
        )
        return [row_to_pattern(row) for row in result.data]

    async def health_check(self) -> bool:
        """Run a lightweight query to verify the store is reachable."""
        start = time.perf_counter()
        try:
            await asyncio.to_thread(
                lambda: self.client.table(PATTERNS_TABLE)
                .select("id")
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Cloud store health check failed: {e}")
            return False

        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Cloud store reachable ({latency_ms:.1f} ms)")
        return True
