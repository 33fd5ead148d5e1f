"""
dokan_sync - Offline-first sync for the Shop Ledger bookkeeping app.

Keeps sales, expenses, customers, products and collections usable without a
network connection and reconciles them with Supabase when back online.
"""

from .context import SyncContext, build_context
from .engine import SyncEngine
from .facade import OfflineFirstRepository
from .network import NetworkMonitor
from .protocols import DokanSyncError, OfflineError, RemoteOperationFailed, StorageUnavailable
from .storage import LocalStore
from .types import OperationKind, PendingMutation, RecordType, SyncResult

try:
    from importlib.metadata import version

    __version__ = version("dokan-sync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "DokanSyncError",
    "LocalStore",
    "NetworkMonitor",
    "OfflineError",
    "OfflineFirstRepository",
    "OperationKind",
    "PendingMutation",
    "RecordType",
    "RemoteOperationFailed",
    "StorageUnavailable",
    "SyncContext",
    "SyncEngine",
    "SyncResult",
    "build_context",
]
