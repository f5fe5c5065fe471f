"""Concrete ConnectivityMonitor implementations.

ManualConnectivityMonitor lets a host (or a test) push state changes in
process. HttpProbeConnectivityMonitor derives the state by probing a URL
with httpx on an interval.
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from resilink.domain.interfaces.connectivity import (
    ConnectivityCallback,
    ConnectivityMonitor,
    ConnectivityState,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://clients3.google.com/generate_204"
DEFAULT_PROBE_INTERVAL_SECONDS = 15.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0


class _SubscriberList:
    """Observer list shared by the monitors below."""

    def __init__(self) -> None:
        self._callbacks: List[ConnectivityCallback] = []

    def add(self, callback: ConnectivityCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, state: ConnectivityState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Connectivity subscriber failed: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._callbacks)


class ManualConnectivityMonitor(ConnectivityMonitor):
    """Monitor whose state is set explicitly by the host."""

    def __init__(self, is_connected: bool = True, is_internet_reachable: Optional[bool] = None):
        self._state = ConnectivityState(is_connected, is_internet_reachable)
        self._subscribers = _SubscriberList()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def on_change(self, callback: ConnectivityCallback) -> Unsubscribe:
        return self._subscribers.add(callback)

    async def fetch_current_state(self) -> ConnectivityState:
        return self._state

    def set_state(self, is_connected: bool, is_internet_reachable: Optional[bool] = None) -> None:
        """Records a new state and notifies every subscriber."""
        self._state = ConnectivityState(is_connected, is_internet_reachable)
        self._subscribers.notify(self._state)


class HttpProbeConnectivityMonitor(ConnectivityMonitor):
    """Monitor that probes a URL periodically and reports state changes.

    Any HTTP response means the network is reachable; a transport error
    means it is not.
    """

    def __init__(
        self,
        probe_url: str = DEFAULT_PROBE_URL,
        interval: float = DEFAULT_PROBE_INTERVAL_SECONDS,
        timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.probe_url = probe_url
        self.interval = interval
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._subscribers = _SubscriberList()
        self._state: Optional[ConnectivityState] = None
        self._task: Optional["asyncio.Task[None]"] = None

    def on_change(self, callback: ConnectivityCallback) -> Unsubscribe:
        return self._subscribers.add(callback)

    async def fetch_current_state(self) -> ConnectivityState:
        try:
            await self._client.head(self.probe_url)
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe to {self.probe_url} failed: {e}")
            return ConnectivityState(is_connected=False, is_internet_reachable=False)
        return ConnectivityState(is_connected=True, is_internet_reachable=True)

    async def poll_once(self) -> ConnectivityState:
        """Probes once and notifies subscribers if the state changed."""
        state = await self.fetch_current_state()
        if state != self._state:
            self._state = state
            self._subscribers.notify(state)
        return state

    def start(self) -> None:
        """Starts background probing on the running loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Connectivity probing started: {self.probe_url} every {self.interval}s")

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self._client.aclose()
