"""State records owned by the resilience layer.

Call records, error statistics and cache entries are keyed by operation key
and owned by the admission controller or the response cache. Queued requests
and retry configs belong to the retry queue manager.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

# Zero-argument callable replaying the original attempt. May be sync or async.
RetryFunction = Callable[[], Union[Any, Awaitable[Any]]]
RetryCondition = Callable[[Optional[BaseException]], bool]


@dataclass
class CallRecord:
    """Timestamp of the last admitted attempt for one operation key."""
    last_call_time: float


@dataclass
class ErrorStats:
    """Success/error counters for one operation key.

    consecutive_errors drives backoff scaling. Only a recorded success resets it.
    """
    successes: int = 0
    errors: int = 0
    consecutive_errors: int = 0
    last_error_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "errors": self.errors,
            "consecutive_errors": self.consecutive_errors,
            "last_error_time": self.last_error_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorStats":
        return cls(
            successes=int(data.get("successes", 0)),
            errors=int(data.get("errors", 0)),
            consecutive_errors=int(data.get("consecutive_errors", 0)),
            last_error_time=float(data.get("last_error_time", 0.0)),
        )


@dataclass
class CacheEntry:
    """Most recent successful payload for an operation key.

    Expiry is derived from the key's admission interval at read time, so
    only the write timestamp is stored.
    """
    data: Any
    timestamp: float


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy snapshot attached to each queued request.

    Frozen: a queued item keeps the config it was enqueued with.
    """
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_backoff: bool = True
    retry_condition: Optional[RetryCondition] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative.")


@dataclass
class QueuedRequest:
    """A failed attempt waiting to be replayed."""
    id: str
    retry_function: RetryFunction
    retry_count: int
    original_error: Optional[BaseException]
    timestamp: float
    config: RetryConfig


@dataclass
class RateLimitPolicy:
    """Host-supplied admission and cache settings.

    Read at decision time: editing a field affects the next decision only.
    Keys present in base_intervals have a dynamic interval that sustained
    errors may raise (see AdmissionController.record_error).
    A cache_sweep_interval of zero or less disables the periodic cache sweep.
    """
    default_interval: float = 5.0
    min_interval: float = 10.0
    base_intervals: Dict[str, float] = field(default_factory=dict)
    max_backoff: float = 300.0
    dynamic_interval_ceiling: float = 120.0
    cache_max_age: float = 86400.0
    cache_sweep_interval: float = 3600.0
