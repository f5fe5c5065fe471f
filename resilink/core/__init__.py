"""Core application layer.

Composes the resilience components into the service callers talk to.
"""
