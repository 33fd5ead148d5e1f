"""
dokan_sync Protocol Definitions
===============================

Interface contracts between the offline-sync core and its collaborators.

Collaborators:
- RemoteAccess:        the remote ledger database (Supabase in production)
- ConnectivitySignal:  the host's online/offline primitive

Error handling philosophy:
- Local storage failures raise StorageUnavailable, never swallowed
- A user-requested sync while offline raises OfflineError
- Any remote failure is raised as RemoteOperationFailed; the facade turns it
  into an offline fallback, the engine records it per mutation
- Invalid record types / operation kinds raise ValueError
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from dokan_sync.types import RecordType

# =============================================================================
# ERRORS
# =============================================================================


class DokanSyncError(Exception):
    """Base for all dokan_sync errors."""

    pass


class StorageUnavailable(DokanSyncError):
    """Raised when the local durable storage cannot be opened or written."""

    pass


class OfflineError(DokanSyncError):
    """Raised when the user explicitly asks to sync while offline."""

    pass


class RemoteOperationFailed(DokanSyncError):
    """Raised when a call to the remote ledger database fails."""

    def __init__(
        self,
        message: str,
        *,
        record_type: Optional[RecordType] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.record_type = record_type
        self.operation = operation


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================


@runtime_checkable
class RemoteAccess(Protocol):
    """Remote create/update/delete/fetch-all, keyed by owner scope and id.

    Implementations raise RemoteOperationFailed on any failure.
    """

    async def create(
        self, record_type: RecordType, owner_scope: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Insert a record and return it as stored remotely (with its id)."""
        ...

    async def update(
        self,
        record_type: RecordType,
        record_id: str,
        payload: Dict[str, Any],
        owner_scope: str,
    ) -> Dict[str, Any]:
        """Update a record and return it as stored remotely."""
        ...

    async def delete(self, record_type: RecordType, record_id: str, owner_scope: str) -> None:
        """Delete a record."""
        ...

    async def fetch_all(self, record_type: RecordType, owner_scope: str) -> List[Dict[str, Any]]:
        """Fetch every record of a type belonging to the owner scope."""
        ...


@runtime_checkable
class ConnectivitySignal(Protocol):
    """Host-supplied online/offline primitive with change notification."""

    def is_online(self) -> bool:
        """Current platform connectivity."""
        ...

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register for change events; returns an unsubscribe callable.

        The callback receives the new online flag. Platforms may fire the
        same value more than once.
        """
        ...
