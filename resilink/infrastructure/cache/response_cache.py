"""Concrete implementation of the per-operation Response Cache.

Keeps the most recent successful payload per operation key. The TTL of an
entry is derived from the key's admission interval (ten times the interval,
bounded by the configured maximum age), so frequently refreshed operations
get short-lived entries without any per-key cache configuration.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from resilink.domain.models.resilience import CacheEntry
from resilink.infrastructure.resilience.admission import AdmissionController

logger = logging.getLogger(__name__)

TTL_INTERVAL_MULTIPLIER = 10


class ResponseCache:
    """In-memory cache with lazy, interval-derived expiry."""

    def __init__(
        self,
        admission: AdmissionController,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the cache.

        Args:
            admission: Supplies per-key intervals and receives success reports.
            clock: Time source returning seconds.
        """
        self.admission = admission
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        logger.info(f"ResponseCache initialized: max_age={self.max_age}s")

    @property
    def max_age(self) -> float:
        return self.admission.policy.cache_max_age

    def effective_ttl(self, key: str) -> float:
        """TTL applied to key's entry at the next read."""
        return min(self.admission.base_interval(key) * TTL_INTERVAL_MULTIPLIER, self.max_age)

    def put(self, key: str, data: Any) -> None:
        """Stores data for key and records the operation's success.

        Replaces any previous entry for the key.
        """
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())
        self.admission.record_success(key)
        logger.debug(f"Cached response for {key}")

    def get(self, key: str) -> Optional[Any]:
        """Returns the cached payload for key, or None if missing or expired.

        Expired entries are left in place; sweep_expired() reclaims them.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss for {key}")
            return None

        age = self._clock() - entry.timestamp
        if age >= self.effective_ttl(key):
            logger.debug(f"Cache expired for {key} (age {age:.1f}s)")
            return None

        logger.info(f"Using cached data for {key}")
        return entry.data

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry for key regardless of expiry (diagnostics only)."""
        return self._entries.get(key)

    def sweep_expired(self) -> int:
        """Removes entries older than the maximum age, whatever their TTL.

        Returns:
            The number of entries removed.
        """
        now = self._clock()
        max_age = self.max_age
        stale = [k for k, e in self._entries.items() if now - e.timestamp > max_age]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug(f"Cleaned up {len(stale)} expired cache entries")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Cleared response cache.")

    def keys(self) -> list:
        return sorted(self._entries)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Plain-dict copy of all entries, for persistence."""
        return {k: {"data": e.data, "timestamp": e.timestamp} for k, e in self._entries.items()}

    def restore(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        """Replaces all entries with the contents of a snapshot.

        Does not count as a success for admission purposes.
        """
        self._entries = {
            k: CacheEntry(data=v.get("data"), timestamp=float(v.get("timestamp", 0.0)))
            for k, v in snapshot.items()
        }
        logger.debug(f"Restored {len(self._entries)} cache entries")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
