"""Network-state monitor.

Wraps the host's connectivity signal and turns its (possibly duplicated)
events into clean online/offline transitions. Reads are synchronous and
never fail; the monitor never polls.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from dokan_sync.protocols import ConnectivitySignal
from dokan_sync.types import ConnectivityState

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[ConnectivityState], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NetworkMonitor:
    """Single view of device connectivity for the rest of the system.

    Args:
        signal: Host connectivity primitive, read once at construction and
            then followed through its change events.
        clock: Returns the current time; used to stamp ``last_online_at``.
    """

    def __init__(
        self,
        signal: ConnectivitySignal,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._signal = signal
        self._clock = clock or _utc_now
        self._is_online = bool(signal.is_online())
        self._last_online_at: Optional[datetime] = self._clock() if self._is_online else None
        self._online_handlers: List[TransitionHandler] = []
        self._offline_handlers: List[TransitionHandler] = []
        self._unsubscribe: Optional[Callable[[], None]] = signal.subscribe(self._on_signal)
        logger.debug(f"Network monitor started ({'online' if self._is_online else 'offline'})")

    def current_state(self) -> ConnectivityState:
        """Snapshot of {is_online, last_online_at}."""
        return ConnectivityState(is_online=self._is_online, last_online_at=self._last_online_at)

    @property
    def is_online(self) -> bool:
        return self._is_online

    def on_transition_to_online(self, handler: TransitionHandler) -> Callable[[], None]:
        """Call ``handler`` once per offline→online transition."""
        return self._register(self._online_handlers, handler)

    def on_transition_to_offline(self, handler: TransitionHandler) -> Callable[[], None]:
        """Call ``handler`` once per online→offline transition."""
        return self._register(self._offline_handlers, handler)

    def close(self) -> None:
        """Stop following the connectivity signal."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _register(
        self, handlers: List[TransitionHandler], handler: TransitionHandler
    ) -> Callable[[], None]:
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def _on_signal(self, online: bool) -> None:
        online = bool(online)
        if online == self._is_online:
            # Platforms fire duplicates; only real transitions count
            logger.debug(f"Ignoring duplicate connectivity event (online={online})")
            return

        self._is_online = online
        if online:
            self._last_online_at = self._clock()
            logger.info("Network: back online")
            handlers = list(self._online_handlers)
        else:
            logger.info("Network: gone offline")
            handlers = list(self._offline_handlers)

        state = self.current_state()
        for handler in handlers:
            try:
                handler(state)
            except Exception as e:
                logger.warning(f"Connectivity handler {handler!r} failed: {e}", exc_info=True)
