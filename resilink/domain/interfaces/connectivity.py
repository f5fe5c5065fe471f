"""Interface for connectivity monitors.

Defines the boundary the resilience layer consumes from whatever component
knows about the device's network state (a platform API, a probe, a test
double). The layer only subscribes; it never polls.
"""

import abc
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class ConnectivityState:
    """One connectivity observation.

    is_internet_reachable is None when the monitor cannot tell.
    """
    is_connected: bool
    is_internet_reachable: Optional[bool] = None

    @property
    def is_restored(self) -> bool:
        """True when this state counts as connected for retry purposes."""
        return self.is_connected and self.is_internet_reachable is not False


ConnectivityCallback = Callable[[ConnectivityState], None]
Unsubscribe = Callable[[], None]


class ConnectivityMonitor(abc.ABC):
    """Abstract Base Class for connectivity-state sources."""

    @abc.abstractmethod
    def on_change(self, callback: ConnectivityCallback) -> Unsubscribe:
        """Subscribes to connectivity-state change events.

        Args:
            callback: Called with each new ConnectivityState.

        Returns:
            A zero-argument callable that removes the subscription.
        """
        pass

    @abc.abstractmethod
    async def fetch_current_state(self) -> ConnectivityState:
        """Returns the current connectivity state once, without subscribing."""
        pass
