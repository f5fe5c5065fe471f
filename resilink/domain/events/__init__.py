"""Domain events emitted by the resilience layer."""
