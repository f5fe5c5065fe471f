"""Infrastructure Layer.

Contains concrete implementations of the resilience components and the
adapters for configuration, persistence, connectivity and the CLI.
"""
