"""
Time sources for the rate limiter, cache and scheduler.

All timing logic reads time through a Clock so tests can drive it by hand.
"""

import threading
import time


class Clock:
    """Monotonic time source (seconds as float)."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Usage:
        clock = ManualClock()
        limiter = RateLimiter(config, clock=clock)
        clock.advance(1.5)
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward and return the new reading"""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now


# Shared default; stateless so one instance is enough
SYSTEM_CLOCK = Clock()
