"""
Clock sources for the discharge workflow.

The workflow never owns time: it asks the injected clock once per invocation
and uses that value for every timestamp and future-date check in the call.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Current time in integer ticks (seconds). Never decreases."""
        ...


class SystemClock:
    """Wall-clock seconds, clamped so that readings never go backwards."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock:
    """
    Clock driven by the host, e.g. a ledger close time or a test.

    Example:
        >>> clock = ManualClock(1000)
        >>> clock.advance(500)
        1500
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError("Clock cannot start before 0")
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, value: int) -> None:
        if value < self._now:
            raise ValueError(f"Clock cannot move backwards ({value} < {self._now})")
        self._now = value

    def advance(self, seconds: int) -> int:
        self.set(self._now + seconds)
        return self._now
