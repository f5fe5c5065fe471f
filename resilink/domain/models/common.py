"""Defines common Value Objects used across the resilience layer.

These objects represent simple values like operation keys and request ids,
plus the structured shapes returned by introspection calls.
"""

from typing import NewType, List, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
OperationKey = NewType("OperationKey", str)   # Caller-defined id of one logical remote call
RequestId = NewType("RequestId", str)         # Unique id of a queued retry
Timestamp = NewType("Timestamp", float)       # Seconds, from the layer's clock

# --- Structured Data ---
class QueuedRequestInfo(TypedDict):
    """Diagnostic view of one queued retry."""
    id: str
    retry_count: int
    enqueued_at: float
    max_retries: int

class QueueStats(TypedDict):
    """Snapshot of the retry queue returned by get_queue_stats()."""
    size: int
    is_draining: bool
    items: List[QueuedRequestInfo]
