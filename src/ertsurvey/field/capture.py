"""
Capture latch deciding which device readings are committed to the line.

Every frame refreshes the live value. A frame is committed only when the
operator armed the latch beforehand; ``advance`` with a live value already on
display commits that value straight away. A reset (new line or lost link)
bumps the epoch so that a capture still waiting on a position lookup is
dropped instead of landing in the next line.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Optional

from ..models import MeasurementRecord
from .locator import DEFAULT_TIMEOUT_MS, Locator, lookup_position

logger = logging.getLogger(__name__)

RecordSink = Callable[[MeasurementRecord], None]


class LatchState(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"


class AdvanceOutcome(str, enum.Enum):
    CAPTURED = "captured"
    ARMED = "armed"
    IGNORED = "ignored"
    DISCARDED = "discarded"


class CaptureLatch:
    def __init__(
        self,
        sink: RecordSink,
        locator: Optional[Locator] = None,
        *,
        geotag: bool = False,
        locator_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        clock: Callable[[], float] = time.time,
        notify: Optional[Callable[[str], None]] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._sink = sink
        self.locator = locator
        self.geotag = geotag and locator is not None
        self.locator_timeout_ms = locator_timeout_ms
        self._clock = clock
        self._notify = notify
        self._lock = lock or threading.RLock()
        self._state = LatchState.IDLE
        self._claimed = False
        self._live_value: Optional[str] = None
        self._epoch = 0

    @property
    def state(self) -> LatchState:
        return self._state

    @property
    def live_value(self) -> Optional[str]:
        return self._live_value

    @property
    def epoch(self) -> int:
        return self._epoch

    def advance(self) -> AdvanceOutcome:
        with self._lock:
            if self._state is LatchState.ARMED:
                logger.debug("Advance ignored, capture already pending")
                return AdvanceOutcome.IGNORED
            if self._live_value is None:
                self._state = LatchState.ARMED
                self._claimed = False
                logger.debug("Latch armed (epoch=%d)", self._epoch)
                return AdvanceOutcome.ARMED
            value = self._live_value
            epoch = self._epoch
        record = self._commit(value, epoch)
        return AdvanceOutcome.CAPTURED if record is not None else AdvanceOutcome.DISCARDED

    def on_frame(self, frame: str) -> Optional[MeasurementRecord]:
        with self._lock:
            self._live_value = frame
            if self._state is not LatchState.ARMED or self._claimed:
                return None
            # Later frames only refresh the live value while this one is finalised.
            self._claimed = True
            epoch = self._epoch
        record = self._commit(frame, epoch)
        with self._lock:
            if self._epoch == epoch:
                self._state = LatchState.IDLE
                self._claimed = False
        return record

    def disarm(self) -> None:
        """Drop a pending request without touching the live value."""
        with self._lock:
            if self._state is LatchState.ARMED and not self._claimed:
                self._state = LatchState.IDLE

    def reset(self) -> None:
        with self._lock:
            self._epoch += 1
            self._state = LatchState.IDLE
            self._claimed = False
            self._live_value = None

    def _commit(self, value: str, epoch: int) -> Optional[MeasurementRecord]:
        captured_at = self._clock()
        position = None
        if self.geotag and self.locator is not None:
            position = lookup_position(self.locator, self.locator_timeout_ms, notify=self._notify)
        record = MeasurementRecord(
            value=value,
            latitude=position.latitude if position is not None else None,
            longitude=position.longitude if position is not None else None,
            captured_at=captured_at,
        )
        with self._lock:
            if self._epoch != epoch:
                logger.info("Discarding capture of %r, line was reset during lookup", value)
                return None
            self._sink(record)
        return record
