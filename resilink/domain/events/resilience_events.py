"""Domain Events related to admission, caching and retry replay.

Emitted through an optional event handler so hosts can observe the layer
without reading its internal state.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class CallAdmitted(DomainEvent):
    """Event triggered when an attempt of an operation is admitted."""
    key: str
    interval_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallDenied(DomainEvent):
    """Event triggered when an attempt is denied by admission control."""
    key: str
    retry_in_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ServedFromCache(DomainEvent):
    """Event triggered when a cached payload is served instead of a live call."""
    key: str
    reason: str  # 'denied' or 'failed'
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryEnqueued(DomainEvent):
    """Event triggered when a failed attempt is queued for replay."""
    request_id: str
    key: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryDropped(DomainEvent):
    """Event triggered when a queued request exhausts its retries."""
    request_id: str
    attempts: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class DrainCompleted(DomainEvent):
    """Event triggered when one drain batch has been processed."""
    processed: int
    succeeded: int
    failed: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ConnectivityRestored(DomainEvent):
    """Event triggered on a restored-connectivity edge."""
    is_internet_reachable: Optional[bool] = None
    timestamp: float = field(default_factory=time.time)
