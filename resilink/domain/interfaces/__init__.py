"""Interfaces (ports) for external collaborators of the resilience layer."""
