"""Connectivity signals that feed the network monitor.

- ManualConnectivitySignal: the host pushes platform online/offline events
- HttpProbeSignal: probes the Supabase REST endpoint with httpx

Both satisfy the ConnectivitySignal protocol. Any polling happens here,
never in the monitor.
"""

import logging
from typing import Callable, Dict, List, Optional

import httpx

from dokan_sync.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class _ListenerMixin:
    """Subscriber bookkeeping shared by the signals."""

    def _init_listeners(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.warning(f"Connectivity listener failed: {e}", exc_info=True)


class ManualConnectivitySignal(_ListenerMixin):
    """Connectivity set by the host application.

    Every ``set_online`` call is forwarded to listeners, even when the value
    did not change, as platform event sources do.
    """

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._init_listeners()

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        self._online = bool(online)
        self._emit(self._online)

    def go_online(self) -> None:
        self.set_online(True)

    def go_offline(self) -> None:
        self.set_online(False)


class HttpProbeSignal(_ListenerMixin):
    """Connectivity derived from periodically reaching the Supabase REST API.

    Any HTTP response below 500 counts as online (an auth error still proves
    the network path works). Transport errors and timeouts count as offline.

    Args:
        base_url: Supabase project URL.
        api_key: Sent as the ``apikey`` header when given.
        interval: Seconds between probes.
        timeout: Per-probe timeout in seconds.
        health_path: Path probed on ``base_url``.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        interval: float = 15.0,
        timeout: float = 5.0,
        health_path: str = "/rest/v1/",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = f"{base_url.rstrip('/')}{health_path}"
        self.timeout = timeout
        self._headers: Dict[str, str] = {"apikey": api_key} if api_key else {}
        self._transport = transport
        self._online = False
        self._init_listeners()
        self._task = PeriodicTask(self.probe_once, interval, name="connectivity-probe")

    def is_online(self) -> bool:
        return self._online

    async def probe_once(self) -> bool:
        """Probe the endpoint once, emit the result, and return it."""
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.get(self.url, headers=self._headers)
            online = response.status_code < 500
            if not online:
                logger.debug(f"Connectivity probe got HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self._online = online
        self._emit(online)
        return online

    async def start(self) -> None:
        """Probe now, then keep probing on the interval."""
        await self.probe_once()
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
