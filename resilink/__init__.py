"""resilink: adaptive network resilience for outbound client calls.

Admission control per logical operation, response caching with derived
expiry, error-driven backoff and a retry queue that drains itself when
connectivity comes back.
"""

__version__ = "0.3.0"
