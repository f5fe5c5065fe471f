"""Interface for presenting resilience diagnostics to the user.

Allows different UI implementations (rich console, plain logs, tests).
"""

import abc
from typing import Any, Dict

from resilink.domain.models.common import QueueStats


class UserInterface(abc.ABC):
    """Abstract Base Class for user-facing output."""

    @abc.abstractmethod
    def display_info(self, message: str) -> None:
        """Displays an informational message."""
        pass

    @abc.abstractmethod
    def display_warning(self, message: str) -> None:
        """Displays a warning message."""
        pass

    @abc.abstractmethod
    def display_error(self, message: str) -> None:
        """Displays an error message."""
        pass

    @abc.abstractmethod
    def display_state(self, snapshot: Dict[str, Any], intervals: Dict[str, float], now: float) -> None:
        """Renders per-key admission and cache state.

        Args:
            snapshot: A ResilienceService snapshot.
            intervals: Effective interval per key at the time of rendering.
            now: Current time, used to show ages.
        """
        pass

    @abc.abstractmethod
    def display_queue_stats(self, stats: QueueStats) -> None:
        """Renders the retry queue statistics."""
        pass
