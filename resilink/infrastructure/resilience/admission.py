"""Per-operation admission control.

Decides whether a new attempt of a logical operation may run now. The
effective interval for a key is its configured interval, floored by the
global minimum and, from the second consecutive error on, scaled by 1.5 per
error (capped). Sustained errors on operations with a configured base
interval raise that interval permanently, until reset_rate_limits() is
called.
"""

import time
import logging
from typing import Any, Callable, Dict, Optional

from resilink.domain.models.resilience import CallRecord, ErrorStats, RateLimitPolicy
from resilink.infrastructure.resilience.errors import describe_error

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5
DYNAMIC_ESCALATION_FACTOR = 1.5
DYNAMIC_ESCALATION_THRESHOLD = 2  # consecutive errors above this escalate


class AdmissionController:
    """Tracks call records and error statistics per operation key.

    Never raises: every entry point returns a value or mutates counters.
    """

    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the admission controller.

        Args:
            policy: Interval settings, read at every decision.
            clock: Time source returning seconds.
        """
        self.policy = policy or RateLimitPolicy()
        self._clock = clock
        self._call_records: Dict[str, CallRecord] = {}
        self._error_stats: Dict[str, ErrorStats] = {}
        # Escalated intervals for dynamic keys, overriding policy.base_intervals
        self._escalated: Dict[str, float] = {}
        logger.info(
            f"AdmissionController initialized: default={self.policy.default_interval}s, "
            f"min={self.policy.min_interval}s, max_backoff={self.policy.max_backoff}s"
        )

    # --- Interval resolution ---

    def is_dynamic(self, key: str) -> bool:
        """Keys with a configured base interval may be escalated by errors."""
        return key in self.policy.base_intervals

    def base_interval(self, key: str) -> float:
        """Configured interval for key: escalated, per-key, or the default."""
        if key in self._escalated:
            return self._escalated[key]
        return self.policy.base_intervals.get(key, self.policy.default_interval)

    def effective_interval(self, key: str) -> float:
        """Interval the next admission decision for key will apply."""
        interval = max(self.base_interval(key), self.policy.min_interval)
        stats = self._error_stats.get(key)
        if stats and stats.consecutive_errors > 1:
            scaled = interval * (BACKOFF_FACTOR ** (stats.consecutive_errors - 1))
            interval = min(scaled, self.policy.max_backoff)
        return interval

    def time_until_admitted(self, key: str) -> float:
        """Seconds until is_admitted(key) would return True (0 if now)."""
        record = self._call_records.get(key)
        if record is None:
            return 0.0
        elapsed = self._clock() - record.last_call_time
        return max(0.0, self.effective_interval(key) - elapsed)

    # --- Admission ---

    def is_admitted(self, key: str) -> bool:
        """Checks whether an attempt of key may proceed now.

        On admission the call record is stamped with the current time. A
        denied check changes nothing, so it is safe to poll.
        """
        now = self._clock()
        interval = self.effective_interval(key)
        record = self._call_records.get(key)

        if record is None or now - record.last_call_time >= interval:
            self._call_records[key] = CallRecord(last_call_time=now)
            return True

        retry_in = interval - (now - record.last_call_time)
        logger.warning(f"Rate limiting call to {key} - next allowed in {retry_in:.1f}s")
        return False

    # --- Outcome tracking ---

    def record_success(self, key: str) -> None:
        """Counts a success and clears the key's error streak."""
        stats = self._error_stats.setdefault(key, ErrorStats())
        stats.successes += 1
        stats.consecutive_errors = 0

    def record_error(self, key: str, error: Any = None) -> None:
        """Counts a failure and escalates dynamic intervals on sustained errors."""
        now = self._clock()
        stats = self._error_stats.setdefault(key, ErrorStats(last_error_time=now))
        stats.errors += 1
        stats.consecutive_errors += 1
        stats.last_error_time = now

        if stats.consecutive_errors > DYNAMIC_ESCALATION_THRESHOLD and self.is_dynamic(key):
            raised = min(
                self.base_interval(key) * DYNAMIC_ESCALATION_FACTOR,
                self.policy.dynamic_interval_ceiling,
            )
            self._escalated[key] = raised
            logger.warning(f"Increased rate limit for {key} to {raised:.1f}s due to errors")

        logger.error(
            f"Call to {key} failed (attempt {stats.consecutive_errors}): {describe_error(error)}"
        )

    def error_stats(self, key: str) -> ErrorStats:
        """Returns a copy of the error statistics for key."""
        stats = self._error_stats.get(key)
        return ErrorStats.from_dict(stats.to_dict()) if stats else ErrorStats()

    def last_call_time(self, key: str) -> Optional[float]:
        record = self._call_records.get(key)
        return record.last_call_time if record else None

    def keys(self) -> list:
        """All operation keys with any tracked state."""
        return sorted(set(self._call_records) | set(self._error_stats) | set(self._escalated))

    # --- Maintenance ---

    def reset_rate_limits(self) -> None:
        """Restores every escalated interval to its configured value."""
        count = len(self._escalated)
        self._escalated.clear()
        logger.info(f"Rate limits reset to configured values ({count} escalated intervals dropped)")

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy of all per-key state, for persistence."""
        return {
            "call_records": {k: r.last_call_time for k, r in self._call_records.items()},
            "error_stats": {k: s.to_dict() for k, s in self._error_stats.items()},
            "escalated_intervals": dict(self._escalated),
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Replaces per-key state with the contents of a snapshot."""
        self._call_records = {
            k: CallRecord(last_call_time=float(v))
            for k, v in snapshot.get("call_records", {}).items()
        }
        self._error_stats = {
            k: ErrorStats.from_dict(v) for k, v in snapshot.get("error_stats", {}).items()
        }
        self._escalated = {
            k: float(v) for k, v in snapshot.get("escalated_intervals", {}).items()
        }
        logger.debug(f"Restored admission state for {len(self.keys())} keys")
