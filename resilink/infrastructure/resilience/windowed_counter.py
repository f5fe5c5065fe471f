"""Implementation of a fixed-window request counter.

Counts calls per window for a given key. The counter is passive: it reports
whether a limit was reached and leaves the decision to the caller.
"""

import time
import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS_PER_WINDOW = 10


class WindowedCounter:
    """Fixed-window counter that rolls forward once the window has elapsed."""

    def __init__(
        self,
        window_duration: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the counter.

        Args:
            window_duration: Length of one counting window in seconds.
            clock: Time source returning seconds.
        """
        if window_duration <= 0:
            raise ValueError("Window duration must be positive.")

        self.window_duration = window_duration
        self._clock = clock
        self.count = 0
        self.reset_time = self._clock() + window_duration
        logger.debug(f"WindowedCounter initialized: window={window_duration}s")

    def _roll_if_expired(self, now: float) -> bool:
        """Resets the count and starts a new window if the current one elapsed."""
        if now > self.reset_time:
            self.count = 0
            self.reset_time = now + self.window_duration
            return True
        return False

    def increment(self) -> int:
        """Counts one request and returns the count for the current window."""
        self._roll_if_expired(self._clock())
        self.count += 1
        return self.count

    def is_limit_exceeded(self, max_requests: int = DEFAULT_MAX_REQUESTS_PER_WINDOW) -> bool:
        """Checks whether the current window already holds max_requests calls.

        Read-only apart from rolling an expired window forward.
        """
        if self._roll_if_expired(self._clock()):
            return False
        return self.count >= max_requests
