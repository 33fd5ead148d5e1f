"""Application wiring.

One ``SyncContext`` per process holds the store, monitor, engine and
repository, built once at startup and passed to whatever needs them.
"""

import logging
from typing import Optional

from dokan_sync.config import Settings, get_settings
from dokan_sync.connectivity import HttpProbeSignal, ManualConnectivitySignal
from dokan_sync.engine import SyncEngine
from dokan_sync.facade import OfflineFirstRepository
from dokan_sync.network import NetworkMonitor
from dokan_sync.protocols import ConnectivitySignal, RemoteAccess
from dokan_sync.remote import SupabaseRemote, UnconfiguredRemote
from dokan_sync.storage import LocalStore

logger = logging.getLogger(__name__)


class SyncContext:
    """The offline-sync components for one owner scope."""

    def __init__(
        self,
        store: LocalStore,
        signal: ConnectivitySignal,
        monitor: NetworkMonitor,
        remote: RemoteAccess,
        engine: SyncEngine,
        repository: OfflineFirstRepository,
        owner_scope: Optional[str] = None,
    ):
        self.store = store
        self.signal = signal
        self.monitor = monitor
        self.remote = remote
        self.engine = engine
        self.repository = repository
        self.owner_scope = owner_scope
        self._started = False

    async def start(self, auto_sync: bool = True) -> None:
        """Open storage, start probing and, if ``auto_sync``, the sync triggers."""
        if self._started:
            return
        await self.store.initialize()
        if auto_sync:
            self.engine.start()
        if isinstance(self.signal, HttpProbeSignal):
            await self.signal.start()
        await self.engine.refresh_pending_count()
        self._started = True
        logger.info(
            f"Sync context started (scope={self.owner_scope}, online={self.monitor.is_online})"
        )

    async def close(self) -> None:
        await self.engine.stop()
        if isinstance(self.signal, HttpProbeSignal):
            await self.signal.stop()
        self.monitor.close()
        self.store.close()
        self._started = False

    async def __aenter__(self) -> "SyncContext":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def build_context(
    settings: Optional[Settings] = None,
    signal: Optional[ConnectivitySignal] = None,
    remote: Optional[RemoteAccess] = None,
) -> SyncContext:
    """Construct a SyncContext from settings.

    Without an explicit ``signal``, connectivity is probed over HTTP when a
    Supabase URL is configured, and assumed offline otherwise. Without an
    explicit ``remote``, a Supabase client is built from settings when
    credentials are configured; otherwise every remote call fails and all
    work stays local.
    """
    settings = settings or get_settings()

    if signal is None:
        if settings.supabase_url:
            signal = HttpProbeSignal(
                settings.supabase_url,
                api_key=settings.supabase_key,
                interval=settings.probe_interval_seconds,
                timeout=settings.probe_timeout_seconds,
            )
        else:
            signal = ManualConnectivitySignal(online=False)

    if remote is None:
        if settings.has_remote:
            remote = SupabaseRemote.from_settings(settings)
        else:
            remote = UnconfiguredRemote()

    store = LocalStore(settings.db_path)
    monitor = NetworkMonitor(signal)
    engine = SyncEngine(
        store,
        monitor,
        remote,
        owner_scope=settings.owner_scope,
        sync_interval=settings.sync_interval_seconds,
        reconnect_debounce=settings.reconnect_debounce_seconds,
        warn_after_attempts=settings.warn_after_attempts,
        hold_record_on_failure=settings.hold_record_on_failure,
    )
    repository = OfflineFirstRepository(store, monitor, remote, engine)
    return SyncContext(
        store, signal, monitor, remote, engine, repository, owner_scope=settings.owner_scope
    )
