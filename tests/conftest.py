"""
Pytest fixtures and test configuration for dokan_sync tests.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from dokan_sync.config import get_settings
from dokan_sync.connectivity import ManualConnectivitySignal
from dokan_sync.engine import SyncEngine
from dokan_sync.facade import OfflineFirstRepository
from dokan_sync.network import NetworkMonitor
from dokan_sync.protocols import RemoteOperationFailed
from dokan_sync.storage import LocalStore
from dokan_sync.types import RecordType, is_local_id

FailRule = Callable[[str, RecordType, Optional[str], Dict[str, Any]], bool]


class FakeRemote:
    """In-memory stand-in for the Supabase tables.

    ``fail_when(operation, record_type, record_id, payload)`` returning True
    makes that call raise RemoteOperationFailed. ``gate``, when set, holds
    every call until the event is set.
    """

    def __init__(self):
        self.tables: Dict[RecordType, Dict[str, Dict[str, Any]]] = {rt: {} for rt in RecordType}
        self.calls: List[Tuple[str, RecordType, Optional[str], Dict[str, Any]]] = []
        self.fail_when: Optional[FailRule] = None
        self.gate: Optional[asyncio.Event] = None
        self._next_id = 0

    def seed(self, record_type: RecordType, record: Dict[str, Any]) -> Dict[str, Any]:
        self.tables[record_type][record["id"]] = dict(record)
        return record

    def calls_for(self, operation: str) -> list:
        return [call for call in self.calls if call[0] == operation]

    async def _begin(self, operation, record_type, record_id, payload):
        self.calls.append((operation, record_type, record_id, dict(payload or {})))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_when and self.fail_when(operation, record_type, record_id, payload or {}):
            raise RemoteOperationFailed(
                f"{operation} rejected", record_type=record_type, operation=operation
            )

    async def create(self, record_type, owner_scope, payload):
        await self._begin("create", record_type, payload.get("id"), payload)
        self._next_id += 1
        record = {k: v for k, v in payload.items() if not (k == "id" and is_local_id(v))}
        record.setdefault("id", f"srv-{self._next_id}")
        record["user_id"] = owner_scope
        self.tables[record_type][record["id"]] = record
        return dict(record)

    async def update(self, record_type, record_id, payload, owner_scope):
        await self._begin("update", record_type, record_id, payload)
        existing = self.tables[record_type].get(record_id)
        if existing is None or existing.get("user_id") != owner_scope:
            raise RemoteOperationFailed(f"no {record_type.value} {record_id}")
        existing.update({k: v for k, v in payload.items() if k not in ("id", "user_id")})
        return dict(existing)

    async def delete(self, record_type, record_id, owner_scope):
        await self._begin("delete", record_type, record_id, {})
        self.tables[record_type].pop(record_id, None)

    async def fetch_all(self, record_type, owner_scope):
        await self._begin("fetch", record_type, None, {})
        return [
            dict(r) for r in self.tables[record_type].values() if r.get("user_id") == owner_scope
        ]


@pytest.fixture(autouse=True)
def dokan_home(tmp_path, monkeypatch):
    """Keep logs and default paths inside a temp directory."""
    home = tmp_path / "dokan-home"
    monkeypatch.setenv("DOKAN_DATA_DIR", str(home))
    get_settings.cache_clear()
    yield home
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clean_dokan_logger():
    """Remove handlers added by setup_dokan_logging."""
    logger = logging.getLogger("dokan_sync")
    yield
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def owner_scope():
    return "user-1"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "offline.db"


@pytest.fixture
def store(db_path):
    return LocalStore(db_path)


@pytest.fixture
def signal():
    return ManualConnectivitySignal(online=True)


@pytest.fixture
def monitor(signal):
    m = NetworkMonitor(signal)
    yield m
    m.close()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def engine(store, monitor, remote, owner_scope):
    return SyncEngine(store, monitor, remote, owner_scope=owner_scope, reconnect_debounce=0.01)


@pytest.fixture
def repository(store, monitor, remote, engine):
    return OfflineFirstRepository(store, monitor, remote, engine)
