"""Supabase implementation of the RemoteAccess protocol.

The supabase-py client is synchronous, so every PostgREST call runs in a
worker thread. Rows are partitioned by the ``user_id`` column, which holds
the owner scope.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from supabase import Client, create_client

from dokan_sync.config import Settings
from dokan_sync.protocols import RemoteOperationFailed
from dokan_sync.types import RecordType, is_local_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

OWNER_COLUMN = "user_id"


def create_supabase_client(settings: Settings) -> Client:
    """Build a Supabase client from settings."""
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError("DOKAN_SUPABASE_URL and DOKAN_SUPABASE_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_key)


class SupabaseRemote:
    """Remote ledger tables (customers, products, sales, expenses, collections)."""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRemote":
        return cls(create_supabase_client(settings))

    async def _call(
        self, fn: Callable[[], T], record_type: RecordType, operation: str
    ) -> T:
        try:
            return await asyncio.to_thread(fn)
        except RemoteOperationFailed:
            raise
        except Exception as e:
            logger.debug(f"Remote {operation} on {record_type.table_name} failed: {e}")
            raise RemoteOperationFailed(
                f"{operation} {record_type.value} failed: {e}",
                record_type=record_type,
                operation=operation,
            ) from e

    async def create(
        self, record_type: RecordType, owner_scope: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        rt = RecordType.parse(record_type)
        data = dict(payload)
        # Local ids never leave the device; the database assigns the real one
        if data.get("id") is None or is_local_id(data.get("id")):
            data.pop("id", None)
        data[OWNER_COLUMN] = owner_scope

        def _insert():
            return self.client.table(rt.table_name).insert(data).execute()

        result = await self._call(_insert, rt, "create")
        if not result.data:
            raise RemoteOperationFailed(
                f"create {rt.value} returned no row", record_type=rt, operation="create"
            )
        return result.data[0]

    async def update(
        self,
        record_type: RecordType,
        record_id: str,
        payload: Dict[str, Any],
        owner_scope: str,
    ) -> Dict[str, Any]:
        rt = RecordType.parse(record_type)
        data = {k: v for k, v in payload.items() if k not in ("id", OWNER_COLUMN)}

        def _update():
            return (
                self.client.table(rt.table_name)
                .update(data)
                .eq("id", record_id)
                .eq(OWNER_COLUMN, owner_scope)
                .execute()
            )

        result = await self._call(_update, rt, "update")
        if not result.data:
            raise RemoteOperationFailed(
                f"update {rt.value}:{record_id} matched no row",
                record_type=rt,
                operation="update",
            )
        return result.data[0]

    async def delete(self, record_type: RecordType, record_id: str, owner_scope: str) -> None:
        rt = RecordType.parse(record_type)

        def _delete():
            return (
                self.client.table(rt.table_name)
                .delete()
                .eq("id", record_id)
                .eq(OWNER_COLUMN, owner_scope)
                .execute()
            )

        await self._call(_delete, rt, "delete")

    async def fetch_all(
        self, record_type: RecordType, owner_scope: str
    ) -> List[Dict[str, Any]]:
        rt = RecordType.parse(record_type)

        def _query():
            return (
                self.client.table(rt.table_name)
                .select("*")
                .eq(OWNER_COLUMN, owner_scope)
                .order("created_at", desc=True)
                .execute()
            )

        result = await self._call(_query, rt, "fetch")
        rows: Optional[List[Dict[str, Any]]] = result.data
        return list(rows or [])


class UnconfiguredRemote:
    """Stand-in used when no Supabase project is configured.

    Every call fails with RemoteOperationFailed, so reads and writes stay
    local and queued mutations wait until a remote is configured.
    """

    async def _fail(self, record_type: RecordType, operation: str):
        raise RemoteOperationFailed(
            "Supabase is not configured (set DOKAN_SUPABASE_URL and DOKAN_SUPABASE_KEY)",
            record_type=RecordType.parse(record_type),
            operation=operation,
        )

    async def create(self, record_type, owner_scope, payload):
        await self._fail(record_type, "create")

    async def update(self, record_type, record_id, payload, owner_scope):
        await self._fail(record_type, "update")

    async def delete(self, record_type, record_id, owner_scope):
        await self._fail(record_type, "delete")

    async def fetch_all(self, record_type, owner_scope):
        await self._fail(record_type, "fetch")
