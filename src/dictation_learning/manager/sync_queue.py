"""Durable, ordered queue of cloud mutations.

Operations are replayed in creation order. When an operation for an
entity fails or is waiting out its backoff, every later operation for
that entity waits too, so a delete can never overtake an earlier upsert.
A ``reset_all`` operation is a barrier for every entity.

Only rejections by the store count toward an operation's attempts. While
the store is unreachable operations simply wait, however long that takes.

The queue runs its own flush loop (periodic timer, connectivity-restored
wakeups, manual triggers) independently of session processing. Failures
never escape ``flush``; they show up in ``status()`` and on the
operation records.
"""

import asyncio
import logging
from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING, Any

import httpx

from dictation_learning.exceptions import SyncFailedError
from dictation_learning.models.learning import LearnedPattern, UserPreference
from dictation_learning.models.sync import (
    ALL_ENTITIES,
    ConnectivityState,
    ConnectivityStatus,
    SyncOperation,
    SyncOperationKind,
    SyncOperationStatus,
)

if TYPE_CHECKING:
    from dictation_learning.db.cloud_store import CloudStore
    from dictation_learning.db.local_store import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_BACKOFF = 2.0
DEFAULT_MAX_BACKOFF = 300.0
DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_CLOUD_TIMEOUT = 10.0
DEFAULT_INTERVAL = 30.0


def is_connectivity_error(error: BaseException) -> bool:
    """Whether an error means the store is unreachable rather than rejecting."""
    return isinstance(error, (httpx.TransportError, OSError))


class SyncQueue:
    """Replays queued mutations against the cloud store with retry/backoff."""

    def __init__(
        self,
        local_store: "LocalStore",
        cloud_store: "CloudStore | None" = None,
        *,
        base_backoff: float = DEFAULT_BASE_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cloud_timeout: float = DEFAULT_CLOUD_TIMEOUT,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._local = local_store
        self._cloud = cloud_store
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.max_attempts = max_attempts
        self.cloud_timeout = cloud_timeout
        self.interval = interval

        self._ops: list[SyncOperation] = []
        self._by_id: dict[str, SyncOperation] = {}
        self._write_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None

        self._status = ConnectivityStatus.OFFLINE
        self._message: str | None = (
            None if cloud_store is not None else "No cloud store configured"
        )
        self._last_sync_at: datetime | None = None

    # =========================================================================
    # Queue contents
    # =========================================================================

    async def load(self) -> int:
        """Restore queued operations from local storage.

        Returns:
            Number of operations restored
        """
        operations = await self._local.load_operations()
        self._ops = operations
        self._by_id = {op.id: op for op in operations}
        if operations:
            logger.info(f"Restored {len(operations)} queued sync operations")
        return len(operations)

    async def enqueue(self, op: SyncOperation) -> SyncOperation:
        """Append an operation. No network I/O happens here.

        Args:
            op: The operation to queue

        Returns:
            The queued operation
        """
        op.status = SyncOperationStatus.PENDING
        self._ops.append(op)
        self._by_id[op.id] = op

        # Lock is taken before any await so storage order matches append order
        async with self._write_lock:
            try:
                op.seq = await self._local.insert_operation(op)
            except Exception as e:
                logger.error(f"Failed to persist sync operation {op.id}: {e}")

        logger.debug(f"Queued {op.kind.value} for {op.entity_id}")
        return op

    def operations(self) -> list[SyncOperation]:
        """Snapshot of queued operations in creation order."""
        return [op.model_copy() for op in self._ops]

    @property
    def depth(self) -> int:
        return len(self._ops)

    def pending_entity_ids(self) -> set[str]:
        return {op.entity_id for op in self._ops}

    async def retry(self, op_id: str) -> SyncOperation:
        """Reset an operation's attempts so it is retried on the next flush.

        Raises:
            KeyError: If the operation is not queued
        """
        op = self._by_id.get(op_id)
        if op is None:
            raise KeyError(op_id)

        op.attempts = 0
        op.permanently_failed = False
        op.status = SyncOperationStatus.PENDING
        op.next_attempt_at = None
        op.last_error = None
        await self._update(op)
        logger.info(f"Manual retry of sync operation {op_id}")
        self.trigger()
        return op.model_copy()

    async def discard(self, op_id: str) -> None:
        """Drop a single operation (operator action).

        Raises:
            KeyError: If the operation is not queued
        """
        op = self._by_id.get(op_id)
        if op is None:
            raise KeyError(op_id)
        self._remove(op)
        async with self._write_lock:
            await self._local.delete_operation(op_id)
        logger.warning(f"Discarded sync operation {op_id} ({op.kind.value})")

    async def clear(self) -> int:
        """Drop every queued operation.

        Returns:
            Number of operations dropped
        """
        count = len(self._ops)
        self._ops = []
        self._by_id = {}
        async with self._write_lock:
            await self._local.clear_operations()
        logger.warning(f"Cleared {count} queued sync operations")
        return count

    # =========================================================================
    # Connectivity
    # =========================================================================

    def status(self) -> ConnectivityState:
        """Coarse connectivity derived from the last attempt."""
        return ConnectivityState(
            status=self._status,
            message=self._message,
            last_sync_at=self._last_sync_at,
            pending_count=sum(1 for op in self._ops if not op.permanently_failed),
            failed_count=sum(
                1 for op in self._ops if op.status == SyncOperationStatus.FAILED
            ),
        )

    def _set_status(self, status: ConnectivityStatus, message: str | None = None) -> None:
        if status != self._status:
            logger.info(f"Sync status: {self._status.value} -> {status.value}")
        self._status = status
        self._message = message

    # =========================================================================
    # Flushing
    # =========================================================================

    def backoff_for(self, attempts: int) -> float:
        """Seconds to wait before the next attempt after ``attempts`` failures."""
        return min(self.base_backoff * (2 ** max(attempts - 1, 0)), self.max_backoff)

    async def flush(self) -> dict[str, int]:
        """Drain due operations in creation order.

        Returns:
            Counts of applied, failed and deferred operations
        """
        result = {"applied": 0, "failed": 0, "deferred": 0}

        async with self._flush_lock:
            if self._cloud is None:
                self._set_status(ConnectivityStatus.OFFLINE, "No cloud store configured")
                result["deferred"] = len(self._ops)
                return result

            if not self._ops:
                await self._check_health()
                return result

            now = datetime.now(UTC)
            blocked: set[str] = set()
            barrier = False
            attempted = False
            last_failure: SyncFailedError | None = None

            snapshot = list(self._ops)
            for index, op in enumerate(snapshot):
                if op.id not in self._by_id:
                    continue  # Cleared while flushing

                is_global = op.entity_id == ALL_ENTITIES
                if barrier or op.entity_id in blocked or (is_global and blocked):
                    barrier = barrier or is_global
                    result["deferred"] += 1
                    continue

                not_due = op.next_attempt_at is not None and op.next_attempt_at > now
                if op.permanently_failed or not_due:
                    result["deferred"] += 1
                else:
                    if not attempted:
                        attempted = True
                        self._set_status(ConnectivityStatus.SYNCING)
                    failure = await self._apply(op)
                    if failure is None:
                        result["applied"] += 1
                        continue
                    last_failure = failure
                    if failure.offline:
                        # Unreachable: this and every remaining call wait for the network
                        result["deferred"] += len(snapshot) - index
                        break
                    result["failed"] += 1

                if is_global:
                    barrier = True
                else:
                    blocked.add(op.entity_id)

            # Status only reflects operations actually sent
            if not attempted:
                pass
            elif last_failure is None:
                self._last_sync_at = datetime.now(UTC)
                self._set_status(ConnectivityStatus.CONNECTED)
            elif last_failure.offline:
                self._set_status(ConnectivityStatus.OFFLINE, last_failure.reason)
            else:
                self._set_status(ConnectivityStatus.ERROR, last_failure.reason)

        if result["applied"] or result["failed"]:
            logger.info(
                f"Sync flush: {result['applied']} applied, {result['failed']} failed, "
                f"{result['deferred']} deferred"
            )
        return result

    async def _apply(self, op: SyncOperation) -> SyncFailedError | None:
        """Send one operation. Returns the failure, if any.

        An unreachable store leaves the operation's attempts and backoff
        untouched; only rejections count toward ``max_attempts``.
        """
        op.status = SyncOperationStatus.IN_FLIGHT
        try:
            await asyncio.wait_for(self._dispatch(op), timeout=self.cloud_timeout)
        except asyncio.CancelledError:
            op.status = SyncOperationStatus.PENDING
            raise
        except Exception as e:
            op.last_error = str(e) or type(e).__name__
            if is_connectivity_error(e):
                op.status = SyncOperationStatus.PENDING
                logger.info(f"Cloud store unreachable, holding {op.kind.value}: {op.last_error}")
                await self._update(op)
                return SyncFailedError(op.id, op.last_error, offline=True)

            op.attempts += 1
            op.status = SyncOperationStatus.FAILED
            if op.attempts >= self.max_attempts:
                op.permanently_failed = True
                op.next_attempt_at = None
                logger.error(
                    f"Sync operation {op.id} ({op.kind.value} {op.entity_id}) "
                    f"gave up after {op.attempts} attempts: {op.last_error}"
                )
            else:
                delay = self.backoff_for(op.attempts)
                op.next_attempt_at = datetime.now(UTC) + timedelta(seconds=delay)
                logger.warning(
                    f"Sync operation {op.id} ({op.kind.value}) failed "
                    f"(attempt {op.attempts}), retrying in {delay:.0f}s: {op.last_error}"
                )
            await self._update(op)
            return SyncFailedError(op.id, op.last_error)

        op.status = SyncOperationStatus.DONE
        self._remove(op)
        async with self._write_lock:
            try:
                await self._local.delete_operation(op.id)
            except Exception as e:
                logger.error(f"Failed to remove applied sync operation {op.id}: {e}")
        return None

    async def _dispatch(self, op: SyncOperation) -> None:
        cloud = self._cloud
        if op.kind == SyncOperationKind.UPSERT_PATTERN:
            await cloud.upsert_pattern(LearnedPattern.model_validate(op.payload))
        elif op.kind == SyncOperationKind.UPSERT_PREFERENCE:
            await cloud.upsert_preference(UserPreference.model_validate(op.payload))
        elif op.kind == SyncOperationKind.DELETE_PATTERN:
            await cloud.delete_pattern(op.entity_id)
        elif op.kind == SyncOperationKind.RESET_ALL:
            await cloud.reset_all()
        else:
            raise ValueError(f"Unknown sync operation kind: {op.kind}")

    async def _check_health(self) -> bool:
        try:
            healthy = await asyncio.wait_for(
                self._cloud.health_check(), timeout=self.cloud_timeout
            )
        except Exception as e:
            logger.warning(f"Cloud health check failed: {e}")
            healthy = False

        if healthy:
            self._last_sync_at = datetime.now(UTC)
            self._set_status(ConnectivityStatus.CONNECTED)
        else:
            self._set_status(ConnectivityStatus.OFFLINE, "Cloud store unreachable")
        return healthy

    async def fetch_remote_patterns(self) -> list[LearnedPattern] | None:
        """List patterns from the cloud store.

        Returns:
            Remote patterns, or None if the store could not be reached
        """
        if self._cloud is None:
            return None
        try:
            return await asyncio.wait_for(
                self._cloud.list_patterns(), timeout=self.cloud_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to list remote patterns: {e}")
            if is_connectivity_error(e):
                self._set_status(ConnectivityStatus.OFFLINE, str(e) or None)
            else:
                self._set_status(ConnectivityStatus.ERROR, str(e))
            return None

    def _remove(self, op: SyncOperation) -> None:
        self._by_id.pop(op.id, None)
        self._ops = [o for o in self._ops if o.id != op.id]

    async def _update(self, op: SyncOperation) -> None:
        async with self._write_lock:
            try:
                await self._local.update_operation(op)
            except Exception as e:
                logger.error(f"Failed to persist sync operation {op.id}: {e}")

    # =========================================================================
    # Background loop
    # =========================================================================

    def trigger(self) -> None:
        """Request a flush as soon as possible."""
        self._wake.set()

    def notify_connectivity_restored(self) -> None:
        """Called by the host when the network comes back."""
        logger.info("Connectivity restored, scheduling sync")
        self.trigger()

    def start(self) -> None:
        """Start the periodic flush loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_loop())
            logger.info(f"Sync loop started (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop the flush loop."""
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
            logger.info("Sync loop stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except TimeoutError:
                pass
            self._wake.clear()

            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Sync loop error: {e}")

    def stats(self) -> dict[str, Any]:
        """Queue statistics for diagnostics."""
        by_kind: dict[str, int] = {}
        for op in self._ops:
            by_kind[op.kind.value] = by_kind.get(op.kind.value, 0) + 1
        return {
            "depth": len(self._ops),
            "by_kind": by_kind,
            "permanently_failed": sum(1 for op in self._ops if op.permanently_failed),
            "status": self._status.value,
        }
