"""Sync queue records and connectivity state."""

from datetime import datetime, UTC
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

# Entity id used by operations that touch every entity
ALL_ENTITIES = "*"


class SyncOperationKind(str, Enum):
    """Mutation replayed against the cloud store."""

    UPSERT_PATTERN = "upsert_pattern"
    UPSERT_PREFERENCE = "upsert_preference"
    DELETE_PATTERN = "delete_pattern"
    RESET_ALL = "reset_all"


class SyncOperationStatus(str, Enum):
    """Lifecycle of a queued operation."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    DONE = "done"


class ConnectivityStatus(str, Enum):
    """Coarse cloud connectivity derived from the last attempt."""

    CONNECTED = "connected"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


class SyncOperation(BaseModel):
    """A durable queue entry."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    seq: int | None = None  # Creation order, assigned by local storage
    kind: SyncOperationKind
    entity_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    status: SyncOperationStatus = SyncOperationStatus.PENDING
    attempts: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    permanently_failed: bool = False


class ConnectivityState(BaseModel):
    """Read-only view of the sync queue's connection health."""

    status: ConnectivityStatus = ConnectivityStatus.OFFLINE
    message: str | None = None
    last_sync_at: datetime | None = None
    pending_count: int = 0
    failed_count: int = 0
