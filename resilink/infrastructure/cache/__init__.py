"""Response caching implementations."""

from .response_cache import ResponseCache

__all__ = ["ResponseCache"]
