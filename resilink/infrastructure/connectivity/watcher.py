"""Turns a connectivity event stream into restored-connectivity edges.

The watcher subscribes to a ConnectivityMonitor and fires its callback once
per transition into a connected, reachable state. It is purely reactive.
"""

import logging
from typing import Callable, Optional

from resilink.domain.interfaces.connectivity import (
    ConnectivityMonitor,
    ConnectivityState,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


class ConnectivityWatcher:
    """Detects restored edges and owns the monitor subscription."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        on_restored: Callable[[ConnectivityState], None],
    ):
        self.monitor = monitor
        self._on_restored = on_restored
        self._unsubscribe: Optional[Unsubscribe] = None
        # None until the first observation; a first restored state counts as an edge
        self._online: Optional[bool] = None

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    @property
    def is_online(self) -> Optional[bool]:
        return self._online

    async def start(self) -> None:
        """Reads the initial state and subscribes to changes. Idempotent."""
        if self._unsubscribe is not None:
            return
        logger.info("Setting up network monitoring for retry mechanism")
        initial = await self.monitor.fetch_current_state()
        self._online = initial.is_restored
        self._unsubscribe = self.monitor.on_change(self.handle_change)
        logger.debug(f"Initial connectivity state: {initial}")

    def stop(self) -> None:
        """Removes the subscription. Safe to call more than once."""
        if self._unsubscribe is None:
            return
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        unsubscribe()
        logger.info("Network monitoring stopped")

    def handle_change(self, state: ConnectivityState) -> None:
        restored = state.is_restored
        was_online = self._online
        self._online = restored
        if restored and not was_online:
            logger.info("Network connection restored, processing retry queue")
            self._on_restored(state)
        elif not restored and was_online:
            logger.warning("Network connection lost")
