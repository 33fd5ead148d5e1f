"""SQLite storage backend for dokan_sync.

Local-first storage with:
- A cache of remote records, one row per (record_type, record_id)
- A FIFO queue of pending mutations awaiting remote confirmation
- Sync metadata (last sync time)

Every public operation is a coroutine. The blocking sqlite3 work runs in a
worker thread via ``asyncio.to_thread`` with one connection per operation,
so the event loop never blocks on disk I/O.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from dokan_sync.protocols import StorageUnavailable
from dokan_sync.types import (
    CachedEntity,
    OperationKind,
    PendingMutation,
    RecordType,
    format_datetime,
    parse_datetime,
    utc_now,
)
from dokan_sync.utils import get_default_db_path

from .schema import init_db, validate_table_name

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Longest error message kept on a failed mutation
MAX_ERROR_LENGTH = 500


def _replace_id(value: Any, old_id: str, new_id: str) -> Any:
    """Return ``value`` with every string equal to ``old_id`` replaced."""
    if isinstance(value, str):
        return new_id if value == old_id else value
    if isinstance(value, dict):
        return {k: _replace_id(v, old_id, new_id) for k, v in value.items()}
    if isinstance(value, list):
        return [_replace_id(v, old_id, new_id) for v in value]
    return value


class LocalStore:
    """Durable per-device store for cached records and pending mutations.

    Operations called before ``initialize()`` completes wait for it. If
    initialization fails, every operation raises the same
    ``StorageUnavailable``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else get_default_db_path()
        self._init_task: Optional[asyncio.Future] = None
        self._init_error: Optional[StorageUnavailable] = None
        self._initialized = False
        self._closed = False

    # === Lifecycle ===

    async def initialize(self) -> None:
        """Open/create the backing database. Safe to call concurrently."""
        if self._initialized:
            return
        if self._init_error is not None:
            raise self._init_error

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(asyncio.to_thread(self._init_db))

        try:
            await asyncio.shield(self._init_task)
        except StorageUnavailable as e:
            self._init_error = e
            raise
        self._initialized = True

    def _init_db(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                init_db(conn)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Local storage unavailable at {self.db_path}: {e}")
            raise StorageUnavailable(f"Cannot open local storage at {self.db_path}: {e}") from e
        logger.debug(f"Local store ready at {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking storage function after initialization, off the loop."""
        if self._closed:
            raise StorageUnavailable(f"Local store at {self.db_path} is closed")
        await self.initialize()
        try:
            return await asyncio.to_thread(fn, *args)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Local storage operation {fn.__name__} failed: {e}")
            raise StorageUnavailable(f"Local storage operation failed: {e}") from e

    def close(self) -> None:
        """Reject further operations. Connections are per operation."""
        self._closed = True

    # === Helpers ===

    @staticmethod
    def _to_json(data: Any) -> str:
        return json.dumps(data, default=str, ensure_ascii=False)

    @staticmethod
    def _from_json(s: Optional[str]) -> Any:
        return json.loads(s) if s else {}

    def _row_to_mutation(self, row: sqlite3.Row) -> PendingMutation:
        return PendingMutation(
            mutation_id=row["mutation_id"],
            record_type=RecordType.parse(row["record_type"]),
            operation=OperationKind.parse(row["operation"]),
            record_id=row["record_id"],
            owner_scope=row["owner_scope"],
            payload=self._from_json(row["payload"]),
            enqueued_at=parse_datetime(row["enqueued_at"]),
            reconciled=bool(row["reconciled"]),
            attempt_count=row["attempt_count"] or 0,
            last_error=row["last_error"],
            last_attempt_at=parse_datetime(row["last_attempt_at"]),
        )

    # === Cached Entities ===

    async def put(
        self,
        record_type: RecordType,
        record: Dict[str, Any],
        owner_scope: Optional[str] = None,
    ) -> None:
        """Upsert one cached record keyed by (record_type, record["id"]).

        Last write wins; there is no merge with the previous copy.
        """
        rt = RecordType.parse(record_type)
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"Cannot cache {rt.value} without an id")
        scope = owner_scope or record.get("user_id")
        if not scope:
            raise ValueError(f"Cannot cache {rt.value}:{record_id} without an owner scope")

        def _put():
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO cached_entities
                       (record_type, record_id, owner_scope, payload, cached_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(record_type, record_id) DO UPDATE SET
                           owner_scope = excluded.owner_scope,
                           payload = excluded.payload,
                           cached_at = excluded.cached_at""",
                    (rt.value, str(record_id), scope, self._to_json(record), utc_now()),
                )

        await self._run(_put)

    async def get(self, record_type: RecordType, record_id: str) -> Optional[Dict[str, Any]]:
        """Get one cached record, or None."""
        rt = RecordType.parse(record_type)

        def _get():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT payload FROM cached_entities WHERE record_type = ? AND record_id = ?",
                    (rt.value, record_id),
                ).fetchone()

        row = await self._run(_get)
        return self._from_json(row["payload"]) if row else None

    async def get_all(self, record_type: RecordType, owner_scope: str) -> List[Dict[str, Any]]:
        """Get every cached record of a type for an owner scope.

        Order is stable within one call only.
        """
        rt = RecordType.parse(record_type)

        def _get_all():
            with self._connect() as conn:
                return conn.execute(
                    """SELECT payload FROM cached_entities
                       WHERE record_type = ? AND owner_scope = ?
                       ORDER BY rowid""",
                    (rt.value, owner_scope),
                ).fetchall()

        rows = await self._run(_get_all)
        return [self._from_json(row["payload"]) for row in rows]

    async def get_entities(self, record_type: RecordType, owner_scope: str) -> List[CachedEntity]:
        """Like get_all, but with cache metadata."""
        rt = RecordType.parse(record_type)

        def _get_entities():
            with self._connect() as conn:
                return conn.execute(
                    """SELECT record_id, owner_scope, payload, cached_at FROM cached_entities
                       WHERE record_type = ? AND owner_scope = ?
                       ORDER BY rowid""",
                    (rt.value, owner_scope),
                ).fetchall()

        rows = await self._run(_get_entities)
        return [
            CachedEntity(
                record_type=rt,
                record_id=row["record_id"],
                owner_scope=row["owner_scope"],
                payload=self._from_json(row["payload"]),
                cached_at=parse_datetime(row["cached_at"]),
            )
            for row in rows
        ]

    async def delete_cached(self, record_type: RecordType, record_id: str) -> bool:
        """Drop one cached record. Returns True if it existed."""
        rt = RecordType.parse(record_type)

        def _delete():
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM cached_entities WHERE record_type = ? AND record_id = ?",
                    (rt.value, record_id),
                )
                return cursor.rowcount > 0

        return await self._run(_delete)

    async def clear_all_cache(self) -> int:
        """Wipe cached records. Pending mutations are never touched."""

        def _clear():
            with self._connect() as conn:
                return conn.execute("DELETE FROM cached_entities").rowcount

        count = await self._run(_clear)
        logger.info(f"Cleared {count} cached records")
        return count

    # === Pending Mutations ===

    async def enqueue_mutation(self, mutation: PendingMutation) -> PendingMutation:
        """Append a pending mutation with reconciled = False.

        Raises:
            StorageUnavailable: the mutation was not persisted.
        """
        mutation = replace(
            mutation,
            record_type=RecordType.parse(mutation.record_type),
            operation=OperationKind.parse(mutation.operation),
            payload=dict(mutation.payload),
            reconciled=False,
        )

        def _enqueue():
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO pending_mutations
                       (mutation_id, record_type, record_id, operation, owner_scope,
                        payload, enqueued_at, reconciled, attempt_count)
                       VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0)""",
                    (
                        mutation.mutation_id,
                        mutation.record_type.value,
                        mutation.record_id,
                        mutation.operation.value,
                        mutation.owner_scope,
                        self._to_json(mutation.payload),
                        format_datetime(mutation.enqueued_at),
                    ),
                )

        await self._run(_enqueue)
        logger.debug(
            f"Queued {mutation.operation.value} {mutation.record_type.value}:{mutation.record_id} "
            f"({mutation.mutation_id})"
        )
        return mutation

    async def list_unreconciled_mutations(self) -> List[PendingMutation]:
        """Unreconciled mutations, oldest enqueued first."""

        def _list():
            with self._connect() as conn:
                return conn.execute(
                    """SELECT * FROM pending_mutations
                       WHERE reconciled = 0
                       ORDER BY enqueued_at, seq"""
                ).fetchall()

        rows = await self._run(_list)
        return [self._row_to_mutation(row) for row in rows]

    async def get_mutation(self, mutation_id: str) -> Optional[PendingMutation]:
        """Get one mutation regardless of its reconciled flag."""

        def _get():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT * FROM pending_mutations WHERE mutation_id = ?", (mutation_id,)
                ).fetchone()

        row = await self._run(_get)
        return self._row_to_mutation(row) if row else None

    async def count_unreconciled(self) -> int:
        """Number of mutations still waiting for the remote system."""

        def _count():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT COUNT(*) FROM pending_mutations WHERE reconciled = 0"
                ).fetchone()[0]

        return await self._run(_count)

    async def mark_reconciled(self, mutation_id: str) -> bool:
        """Mark one mutation reconciled.

        No-op when the mutation is absent or already reconciled, so it is safe
        to repeat after a crash mid-sync. Returns True if a row changed.
        """

        def _mark():
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE pending_mutations SET reconciled = 1 "
                    "WHERE mutation_id = ? AND reconciled = 0",
                    (mutation_id,),
                )
                return cursor.rowcount > 0

        return await self._run(_mark)

    async def record_failure(self, mutation_id: str, error: str) -> int:
        """Record a failed attempt and return the new attempt count."""
        now = utc_now()

        def _record():
            with self._connect() as conn:
                conn.execute(
                    """UPDATE pending_mutations
                       SET attempt_count = attempt_count + 1,
                           last_error = ?,
                           last_attempt_at = ?
                       WHERE mutation_id = ? AND reconciled = 0""",
                    (error[:MAX_ERROR_LENGTH], now, mutation_id),
                )
                row = conn.execute(
                    "SELECT attempt_count FROM pending_mutations WHERE mutation_id = ?",
                    (mutation_id,),
                ).fetchone()
                return row["attempt_count"] if row else 0

        return await self._run(_record)

    async def purge_reconciled(self) -> int:
        """Delete reconciled mutations. Unreconciled ones are never removed."""

        def _purge():
            with self._connect() as conn:
                return conn.execute("DELETE FROM pending_mutations WHERE reconciled = 1").rowcount

        count = await self._run(_purge)
        if count:
            logger.debug(f"Purged {count} reconciled mutations")
        return count

    async def remap_record_id(
        self,
        record_type: RecordType,
        local_id: str,
        remote_id: str,
        remote_record: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Replace a locally generated id with the id the remote system assigned.

        In one transaction:
        - the cached record is re-keyed (replaced by ``remote_record`` if given)
        - unreconciled mutations targeting the local id are retargeted
        - any payload value equal to the local id is rewritten, in queued
          mutations and in cached records of every type (foreign keys such as
          a sale's customer_id)

        Returns:
            Number of pending mutations rewritten.
        """
        rt = RecordType.parse(record_type)
        like = f"%{local_id}%"

        def _swap(payload_json: str) -> str:
            return self._to_json(_replace_id(self._from_json(payload_json), local_id, remote_id))

        def _remap():
            rewritten = 0
            with self._connect() as conn:
                row = conn.execute(
                    """SELECT owner_scope, payload FROM cached_entities
                       WHERE record_type = ? AND record_id = ?""",
                    (rt.value, local_id),
                ).fetchone()
                if row:
                    conn.execute(
                        "DELETE FROM cached_entities WHERE record_type = ? AND record_id = ?",
                        (rt.value, local_id),
                    )
                    if remote_record is not None:
                        payload_json = self._to_json(remote_record)
                    else:
                        payload_json = _swap(row["payload"])
                    conn.execute(
                        """INSERT OR REPLACE INTO cached_entities
                           (record_type, record_id, owner_scope, payload, cached_at)
                           VALUES (?, ?, ?, ?, ?)""",
                        (rt.value, remote_id, row["owner_scope"], payload_json, utc_now()),
                    )

                conn.execute(
                    """UPDATE pending_mutations SET record_id = ?
                       WHERE reconciled = 0 AND record_type = ? AND record_id = ?""",
                    (remote_id, rt.value, local_id),
                )

                for mutation_row in conn.execute(
                    """SELECT mutation_id, payload FROM pending_mutations
                       WHERE reconciled = 0 AND payload LIKE ?""",
                    (like,),
                ).fetchall():
                    conn.execute(
                        "UPDATE pending_mutations SET payload = ? WHERE mutation_id = ?",
                        (_swap(mutation_row["payload"]), mutation_row["mutation_id"]),
                    )
                    rewritten += 1

                for cached_row in conn.execute(
                    """SELECT record_type, record_id, payload FROM cached_entities
                       WHERE payload LIKE ?""",
                    (like,),
                ).fetchall():
                    conn.execute(
                        """UPDATE cached_entities SET payload = ?
                           WHERE record_type = ? AND record_id = ?""",
                        (
                            _swap(cached_row["payload"]),
                            cached_row["record_type"],
                            cached_row["record_id"],
                        ),
                    )
            return rewritten

        rewritten = await self._run(_remap)
        logger.info(f"Remapped {rt.value} {local_id} -> {remote_id} ({rewritten} queued payloads)")
        return rewritten

    # === Sync Metadata ===

    async def get_meta(self, key: str) -> Optional[str]:
        """Get a sync metadata value."""

        def _get():
            with self._connect() as conn:
                return conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()

        row = await self._run(_get)
        return row["value"] if row else None

    async def set_meta(self, key: str, value: str) -> None:
        """Set a sync metadata value."""

        def _set():
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, utc_now()),
                )

        await self._run(_set)

    # === Stats ===

    async def get_stats(self) -> Dict[str, int]:
        """Cached record counts per type plus mutation queue counts."""

        def _stats():
            with self._connect() as conn:
                stats = {rt.value: 0 for rt in RecordType}
                for row in conn.execute(
                    f"""SELECT record_type, COUNT(*) AS count
                        FROM {validate_table_name("cached_entities")}
                        GROUP BY record_type"""
                ).fetchall():
                    stats[row["record_type"]] = row["count"]

                table = validate_table_name("pending_mutations")
                stats["pending_mutations"] = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE reconciled = 0"
                ).fetchone()[0]
                stats["reconciled_mutations"] = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE reconciled = 1"
                ).fetchone()[0]
            return stats

        return await self._run(_stats)
