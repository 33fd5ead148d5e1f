"""
Shared record types for dokan_sync.

These dataclasses are the vocabulary passed between the local store, the
network monitor, the sync engine and the read/write facade. Nothing here
touches storage or the network.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

LOCAL_ID_PREFIX = "local_"


# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


def format_datetime(dt: datetime) -> str:
    """Format a datetime the way the store persists timestamps."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def new_local_id() -> str:
    """Generate an identifier for a record created while offline."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_local_id(record_id: Optional[str]) -> bool:
    """True if the id was generated locally and never confirmed remotely."""
    return isinstance(record_id, str) and record_id.startswith(LOCAL_ID_PREFIX)


# === Enums ===


class RecordType(str, Enum):
    """Record types mirrored from the remote ledger database."""

    CUSTOMER = "customer"
    PRODUCT = "product"
    SALE = "sale"
    EXPENSE = "expense"
    COLLECTION = "collection"

    @property
    def table_name(self) -> str:
        """Remote table holding this record type."""
        return RECORD_TABLES[self]

    @classmethod
    def parse(cls, value: Any) -> "RecordType":
        """Accept an enum member, a type name, or a remote table name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key == member.value or key == member.table_name:
                    return member
        raise ValueError(f"Unknown record type: {value!r}")


RECORD_TABLES: Dict[RecordType, str] = {
    RecordType.CUSTOMER: "customers",
    RecordType.PRODUCT: "products",
    RecordType.SALE: "sales",
    RecordType.EXPENSE: "expenses",
    RecordType.COLLECTION: "collections",
}


class OperationKind(str, Enum):
    """Kind of write carried by a pending mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown operation kind: {value!r}") from None


# === Records ===


@dataclass
class CachedEntity:
    """A locally persisted mirror of one remote record."""

    record_type: RecordType
    record_id: str
    owner_scope: str
    payload: Dict[str, Any]
    cached_at: Optional[datetime] = None


@dataclass
class PendingMutation:
    """A locally queued write that the remote system has not confirmed yet."""

    record_type: RecordType
    operation: OperationKind
    record_id: str
    owner_scope: str
    payload: Dict[str, Any] = field(default_factory=dict)
    mutation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reconciled: bool = False
    # Retry tracking
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


@dataclass
class ConnectivityState:
    """Snapshot of device connectivity."""

    is_online: bool
    last_online_at: Optional[datetime] = None


@dataclass
class SyncRunState:
    """What the sync engine is doing right now."""

    is_syncing: bool = False
    pending_count: int = 0
    last_sync_completed_at: Optional[datetime] = None
    failed_mutation_ids: Set[str] = field(default_factory=set)


@dataclass
class SyncResult:
    """Result of one sync run."""

    attempted: int = 0
    reconciled: int = 0
    purged: int = 0
    failed: List[str] = field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.skipped and len(self.failed) == 0
