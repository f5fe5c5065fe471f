"""API Resilience Implementations.

Contains the windowed request counter, per-operation admission control,
connectivity error classification and the connectivity-driven retry queue.
Bounded Context: API Resilience
"""
