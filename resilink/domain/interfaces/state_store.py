"""Interface for durable storage of resilience state.

The layer itself keeps everything in memory. A host that wants call records,
error statistics and cached responses to survive a relaunch saves the
service snapshot through a StateStore.
"""

import abc
from typing import Any, Dict, Optional


class StateStore(abc.ABC):
    """Abstract Base Class for persisting resilience snapshots."""

    @abc.abstractmethod
    def save(self, snapshot: Dict[str, Any]) -> None:
        """Persists a snapshot, replacing any previous one."""
        pass

    @abc.abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Returns the last saved snapshot, or None if nothing was saved."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Removes any saved snapshot."""
        pass
