from __future__ import annotations

import enum
import threading
import time
from typing import Callable, Optional

DEFAULT_WINDOW_MS = 2000


class StabilityStatus(str, enum.Enum):
    CLEARED = "cleared"
    UNSTABLE = "unstable"
    STABLE = "stable"


class StabilityIndicator:
    """
    Advisory "value has settled" flag for the live reading.

    A change of the live value (string comparison) restarts the countdown;
    the value counts as stable once it has been held for *window_ms*. A
    ``None`` value (no reading or lost link) clears the indicator. Nothing in
    the capture path reads this flag.
    """

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS, clock: Callable[[], float] = time.monotonic):
        self.window_ms = window_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[str] = None
        self._changed_at: Optional[float] = None

    def __call__(self, value: Optional[str]) -> None:
        self.observe(value)

    def observe(self, value: Optional[str], now: Optional[float] = None) -> StabilityStatus:
        now = self._clock() if now is None else now
        with self._lock:
            if value != self._value:
                self._value = value
                self._changed_at = now if value is not None else None
        return self.status(now)

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._changed_at = None

    def status(self, now: Optional[float] = None) -> StabilityStatus:
        now = self._clock() if now is None else now
        with self._lock:
            if self._value is None or self._changed_at is None:
                return StabilityStatus.CLEARED
            # clock differences rounded to microseconds
            held_ms = round((now - self._changed_at) * 1000.0, 3)
        return StabilityStatus.STABLE if held_ms >= self.window_ms else StabilityStatus.UNSTABLE

    @property
    def is_stable(self) -> bool:
        return self.status() is StabilityStatus.STABLE
