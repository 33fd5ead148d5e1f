"""Synchronization engine.

Replays the pending-mutation queue against the remote ledger database, in
enqueue order, whenever the device comes back online and on a recurring
safety-net interval. Also warms the local cache from remote snapshots.

Retry policy: a failed mutation stays unreconciled and is retried on the
next run, forever, with no backoff beyond the interval between runs. Each
failure is counted on the mutation and a warning is logged once the count
reaches ``warn_after_attempts``.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional, Set, Tuple

from dokan_sync.logging_config import log_pull, log_sync_run
from dokan_sync.network import NetworkMonitor
from dokan_sync.protocols import (
    OfflineError,
    RemoteAccess,
    RemoteOperationFailed,
    StorageUnavailable,
)
from dokan_sync.scheduler import PeriodicTask
from dokan_sync.storage import LocalStore
from dokan_sync.types import (
    ConnectivityState,
    OperationKind,
    PendingMutation,
    RecordType,
    SyncResult,
    SyncRunState,
    format_datetime,
    is_local_id,
    parse_datetime,
)

logger = logging.getLogger(__name__)

LAST_SYNC_META_KEY = "last_sync_time"


class SyncEngine:
    """Drains pending mutations to the remote system.

    Args:
        store: Local durable store holding the cache and the mutation queue.
        monitor: Connectivity view; runs are skipped while offline.
        remote: Remote ledger database.
        owner_scope: Default scope for snapshot pulls.
        sync_interval: Seconds between safety-net runs.
        reconnect_debounce: Delay between an online transition and its run.
        warn_after_attempts: Failed attempts before a mutation is logged as stuck.
        hold_record_on_failure: Skip the rest of a record's mutations in a run
            once one of them fails.
    """

    def __init__(
        self,
        store: LocalStore,
        monitor: NetworkMonitor,
        remote: RemoteAccess,
        owner_scope: Optional[str] = None,
        sync_interval: float = 300.0,
        reconnect_debounce: float = 1.0,
        warn_after_attempts: int = 5,
        hold_record_on_failure: bool = False,
    ):
        self._store = store
        self._monitor = monitor
        self._remote = remote
        self.owner_scope = owner_scope
        self.reconnect_debounce = reconnect_debounce
        self.warn_after_attempts = warn_after_attempts
        self.hold_record_on_failure = hold_record_on_failure

        self._state = SyncRunState()
        self._periodic = PeriodicTask(self._scheduled_sync, sync_interval, name="periodic-sync")
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._unsubscribe_online = None
        self._tasks: Set[asyncio.Task] = set()

    # === State ===

    @property
    def state(self) -> SyncRunState:
        """Copy of the current run state."""
        return replace(self._state, failed_mutation_ids=set(self._state.failed_mutation_ids))

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    async def refresh_pending_count(self) -> int:
        self._state.pending_count = await self._store.count_unreconciled()
        return self._state.pending_count

    async def get_last_sync_time(self) -> Optional[datetime]:
        """When the last run completed, from store metadata."""
        if self._state.last_sync_completed_at is not None:
            return self._state.last_sync_completed_at
        return parse_datetime(await self._store.get_meta(LAST_SYNC_META_KEY))

    # === Sync ===

    async def run_sync(self) -> SyncResult:
        """Replay unreconciled mutations once.

        Returns a skipped result, without touching anything, when offline or
        when another run is in progress.
        """
        # Guard is checked and taken before the first await
        if self._state.is_syncing:
            logger.debug("Sync already in progress, skipping")
            return SyncResult(skipped=True, reason="already syncing")
        if not self._monitor.is_online:
            logger.debug("Offline - sync skipped, changes stay queued")
            return SyncResult(skipped=True, reason="offline")

        self._state.is_syncing = True
        self._state.failed_mutation_ids = set()
        result = SyncResult()
        try:
            await self._replay_queue(result)
            result.purged = await self._store.purge_reconciled()

            completed_at = datetime.now(timezone.utc)
            self._state.last_sync_completed_at = completed_at
            await self._store.set_meta(LAST_SYNC_META_KEY, format_datetime(completed_at))
            await self.refresh_pending_count()
        finally:
            self._state.is_syncing = False

        log_sync_run(self.owner_scope, result.attempted, result.reconciled, len(result.failed))
        logger.info(
            f"Sync complete: attempted={result.attempted}, reconciled={result.reconciled}, "
            f"failed={len(result.failed)}, pending={self._state.pending_count}"
        )
        return result

    async def force_sync(self) -> SyncResult:
        """User-requested sync.

        Raises:
            OfflineError: the device is offline. Nothing is changed.
        """
        if not self._monitor.is_online:
            raise OfflineError("Cannot sync while offline; changes will sync when back online")
        return await self.run_sync()

    async def _replay_queue(self, result: SyncResult) -> None:
        pending = await self._store.list_unreconciled_mutations()
        self._state.pending_count = len(pending)
        if not pending:
            return
        logger.debug(f"Replaying {len(pending)} pending mutations")

        held: Set[Tuple[RecordType, str]] = set()
        remapped = False
        for mutation in pending:
            if remapped:
                # An earlier create in this run may have rewritten this mutation
                mutation = await self._store.get_mutation(mutation.mutation_id)
                if mutation is None or mutation.reconciled:
                    continue

            key = (mutation.record_type, mutation.record_id)
            if key in held:
                logger.debug(
                    f"Holding {mutation.operation.value} {mutation.record_type.value}:"
                    f"{mutation.record_id} behind an earlier failure"
                )
                continue

            result.attempted += 1
            try:
                remapped = await self._apply(mutation) or remapped
            except StorageUnavailable:
                raise
            except Exception as e:
                await self._handle_failure(mutation, e, result)
                if self.hold_record_on_failure:
                    held.add(key)
                continue

            await self._store.mark_reconciled(mutation.mutation_id)
            result.reconciled += 1

    async def _apply(self, mutation: PendingMutation) -> bool:
        """Send one mutation to the remote system and mirror the outcome locally.

        Returns True when a local id was remapped to a remote id.
        """
        rt = mutation.record_type
        scope = mutation.owner_scope

        if mutation.operation == OperationKind.CREATE:
            created = await self._remote.create(rt, scope, mutation.payload)
            remote_id = created.get("id")
            if is_local_id(mutation.record_id) and remote_id is not None:
                await self._store.remap_record_id(rt, mutation.record_id, str(remote_id), created)
                return True
            await self._store.put(rt, created, scope)
            return False

        if is_local_id(mutation.record_id):
            raise RemoteOperationFailed(
                f"{rt.value}:{mutation.record_id} has not been created remotely yet",
                record_type=rt,
                operation=mutation.operation.value,
            )

        if mutation.operation == OperationKind.UPDATE:
            updated = await self._remote.update(rt, mutation.record_id, mutation.payload, scope)
            await self._store.put(rt, updated, scope)
        else:
            await self._remote.delete(rt, mutation.record_id, scope)
            await self._store.delete_cached(rt, mutation.record_id)
        return False

    async def _handle_failure(
        self, mutation: PendingMutation, error: Exception, result: SyncResult
    ) -> None:
        message = str(error) or error.__class__.__name__
        self._state.failed_mutation_ids.add(mutation.mutation_id)
        result.failed.append(mutation.mutation_id)

        attempts = await self._store.record_failure(mutation.mutation_id, message)
        label = (
            f"{mutation.operation.value} {mutation.record_type.value}:{mutation.record_id} "
            f"({mutation.mutation_id})"
        )
        if attempts >= self.warn_after_attempts:
            logger.warning(f"Mutation {label} has failed {attempts} times: {message}")
        else:
            logger.info(f"Mutation {label} failed (attempt {attempts}), will retry: {message}")

    # === Snapshots ===

    def _scope(self, owner_scope: Optional[str]) -> str:
        scope = owner_scope or self.owner_scope
        if not scope:
            raise ValueError("owner_scope is required")
        return scope

    async def pull_snapshot(
        self, record_type: RecordType, owner_scope: Optional[str] = None
    ) -> int:
        """Fetch every remote record of a type and cache it.

        Returns:
            Number of records written to the cache.

        Raises:
            OfflineError: the device is offline.
            RemoteOperationFailed: the fetch failed. Records already written stay.
        """
        rt = RecordType.parse(record_type)
        scope = self._scope(owner_scope)
        if not self._monitor.is_online:
            raise OfflineError(f"Cannot pull {rt.table_name} while offline")

        try:
            records = await self._remote.fetch_all(rt, scope)
        except RemoteOperationFailed as e:
            log_pull(scope, rt.value, 0, error=str(e))
            raise

        count = 0
        for record in records:
            await self._store.put(rt, record, scope)
            count += 1

        log_pull(scope, rt.value, count)
        logger.debug(f"Pulled {count} {rt.table_name}")
        return count

    async def pull_all(self, owner_scope: Optional[str] = None) -> Dict[str, int]:
        """Warm the cache for every record type.

        A failure for one type is logged and the others still run. Failed
        types are absent from the returned counts.
        """
        scope = self._scope(owner_scope)
        if not self._monitor.is_online:
            raise OfflineError("Cannot download data while offline")

        counts: Dict[str, int] = {}
        for rt in RecordType:
            try:
                counts[rt.value] = await self.pull_snapshot(rt, scope)
            except RemoteOperationFailed as e:
                logger.error(f"Failed to pull {rt.table_name}: {e}")
        logger.info(f"Initial download complete: {counts}")
        return counts

    # === Triggers ===

    def start(self) -> None:
        """Sync on every transition to online and on the recurring interval."""
        if self._unsubscribe_online is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe_online = self._monitor.on_transition_to_online(self._on_online)
        self._periodic.start()
        logger.debug("Sync triggers started")

    async def stop(self) -> None:
        """Remove triggers and wait for any triggered run to finish."""
        if self._unsubscribe_online is not None:
            self._unsubscribe_online()
            self._unsubscribe_online = None
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        await self._periodic.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.debug("Sync triggers stopped")

    def _on_online(self, state: ConnectivityState) -> None:
        if self._loop is None:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(
            self.reconnect_debounce, self._spawn_sync, "reconnect"
        )

    def _spawn_sync(self, trigger: str) -> None:
        self._debounce_handle = None
        task = self._loop.create_task(self._triggered_sync(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _scheduled_sync(self) -> None:
        await self._triggered_sync("interval")

    async def _triggered_sync(self, trigger: str) -> Optional[SyncResult]:
        try:
            result = await self.run_sync()
        except StorageUnavailable as e:
            logger.error(f"{trigger} sync aborted, local storage unavailable: {e}")
            return None
        if not result.skipped:
            logger.debug(f"{trigger} sync finished (failed={len(result.failed)})")
        return result
