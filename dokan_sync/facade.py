"""Offline-first read/write entry point for UI-level data hooks.

``read`` and ``write`` never fail because the network is down: they fall
back to the local cache and the pending-mutation queue. Only local storage
failures reach the caller.
"""

import logging
from typing import Any, Dict, List, Optional

from dokan_sync.engine import SyncEngine
from dokan_sync.network import NetworkMonitor
from dokan_sync.protocols import RemoteAccess, StorageUnavailable
from dokan_sync.storage import LocalStore
from dokan_sync.types import (
    OperationKind,
    PendingMutation,
    RecordType,
    is_local_id,
    new_local_id,
    utc_now,
)

logger = logging.getLogger(__name__)


class OfflineFirstRepository:
    """Remote-first when online, local-first otherwise."""

    def __init__(
        self,
        store: LocalStore,
        monitor: NetworkMonitor,
        remote: RemoteAccess,
        engine: Optional[SyncEngine] = None,
    ):
        self._store = store
        self._monitor = monitor
        self._remote = remote
        self._engine = engine

    async def read(self, record_type: RecordType, owner_scope: str) -> List[Dict[str, Any]]:
        """All records of a type for the scope.

        Online: the remote result, mirrored into the cache. Offline or on a
        remote failure: whatever the cache holds (possibly stale or empty).
        """
        rt = RecordType.parse(record_type)
        if self._monitor.is_online:
            try:
                records = await self._remote.fetch_all(rt, owner_scope)
            except StorageUnavailable:
                raise
            except Exception as e:
                logger.warning(f"Remote read of {rt.table_name} failed, using cache: {e}")
            else:
                for record in records:
                    await self._store.put(rt, record, owner_scope)
                return records

        return await self._store.get_all(rt, owner_scope)

    async def write(
        self,
        record_type: RecordType,
        operation: OperationKind,
        payload: Dict[str, Any],
        owner_scope: str,
    ) -> Dict[str, Any]:
        """Create, update or delete a record and return the resulting record.

        Online: written remotely and mirrored into the cache. Offline or on a
        remote failure: applied to the cache and queued for the sync engine.
        Changes to a record that only exists locally are always queued.

        Raises:
            StorageUnavailable: the offline mutation could not be persisted.
            ValueError: unknown record type or operation, or an update/delete
                without an ``id``.
        """
        rt = RecordType.parse(record_type)
        op = OperationKind.parse(operation)
        if op != OperationKind.CREATE and not payload.get("id"):
            raise ValueError(f"{op.value} {rt.value} requires an id")

        if op != OperationKind.CREATE and is_local_id(str(payload["id"])):
            # The create is still queued; this change is replayed after it
            return await self._write_local(rt, op, payload, owner_scope)

        if self._monitor.is_online:
            try:
                return await self._write_remote(rt, op, payload, owner_scope)
            except StorageUnavailable:
                raise
            except Exception as e:
                logger.warning(f"Remote {op.value} of {rt.value} failed, queuing offline: {e}")

        return await self._write_local(rt, op, payload, owner_scope)

    async def _write_remote(
        self,
        rt: RecordType,
        op: OperationKind,
        payload: Dict[str, Any],
        owner_scope: str,
    ) -> Dict[str, Any]:
        if op == OperationKind.CREATE:
            record = await self._remote.create(rt, owner_scope, payload)
        elif op == OperationKind.UPDATE:
            record = await self._remote.update(rt, str(payload["id"]), payload, owner_scope)
        else:
            record_id = str(payload["id"])
            await self._remote.delete(rt, record_id, owner_scope)
            await self._store.delete_cached(rt, record_id)
            return dict(payload)

        await self._store.put(rt, record, owner_scope)
        return record

    async def _write_local(
        self,
        rt: RecordType,
        op: OperationKind,
        payload: Dict[str, Any],
        owner_scope: str,
    ) -> Dict[str, Any]:
        if op == OperationKind.CREATE:
            record = {**payload, "id": payload.get("id") or new_local_id()}
            record["user_id"] = owner_scope
            record.setdefault("created_at", utc_now())
        elif op == OperationKind.UPDATE:
            cached = await self._store.get(rt, str(payload["id"])) or {}
            record = {**cached, **payload, "user_id": owner_scope}
        else:
            record = dict(payload)

        record_id = str(record["id"])
        mutation = PendingMutation(
            record_type=rt,
            operation=op,
            record_id=record_id,
            owner_scope=owner_scope,
            payload=dict(payload) if op != OperationKind.CREATE else dict(record),
        )
        await self._store.enqueue_mutation(mutation)

        if op == OperationKind.DELETE:
            await self._store.delete_cached(rt, record_id)
        else:
            await self._store.put(rt, record, owner_scope)

        if self._engine is not None:
            await self._engine.refresh_pending_count()
        logger.debug(f"Queued offline {op.value} for {rt.value}:{record_id}")
        return record

    async def status(self) -> Dict[str, Any]:
        """Connectivity and sync status for display."""
        connectivity = self._monitor.current_state()
        is_syncing = self._engine.is_syncing if self._engine is not None else False
        pending_count = await self._store.count_unreconciled()
        return {
            "is_online": connectivity.is_online,
            "last_online_at": connectivity.last_online_at,
            "is_syncing": is_syncing,
            "pending_count": pending_count,
        }
