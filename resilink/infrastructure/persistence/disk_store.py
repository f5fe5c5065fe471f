"""diskcache-backed StateStore.

Persists resilience snapshots (call records, error statistics, cached
responses, escalated intervals) so they survive a relaunch.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import diskcache as dc

from resilink.domain.interfaces.state_store import StateStore

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "resilience_snapshot"
SNAPSHOT_VERSION = 1


class DiskStateStore(StateStore):
    """Stores a single versioned snapshot in a diskcache directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._cache = dc.Cache(str(self.directory), timeout=1)
        logger.info(f"Initialized state store at: {self._cache.directory}")

    def save(self, snapshot: Dict[str, Any]) -> None:
        self._cache.set(SNAPSHOT_KEY, {"version": SNAPSHOT_VERSION, "state": snapshot})
        logger.debug(f"Saved resilience snapshot to {self.directory}")

    def load(self) -> Optional[Dict[str, Any]]:
        stored = self._cache.get(SNAPSHOT_KEY)
        if stored is None:
            return None
        if not isinstance(stored, dict) or stored.get("version") != SNAPSHOT_VERSION:
            logger.warning(f"Ignoring incompatible snapshot in {self.directory}")
            return None
        return stored.get("state")

    def clear(self) -> None:
        self._cache.delete(SNAPSHOT_KEY)
        logger.info(f"Cleared saved resilience state in {self.directory}")

    def close(self) -> None:
        self._cache.close()

    def __enter__(self) -> "DiskStateStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
