from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, List, Optional, Tuple

from ..classification import DEFAULT_THRESHOLDS, Thresholds
from ..export import SurveyLine, format_spacing
from ..models import MeasurementRecord
from .capture import AdvanceOutcome, CaptureLatch, LatchState
from .link import Link, LinkWriteError
from .locator import DEFAULT_TIMEOUT_MS, Locator

logger = logging.getLogger(__name__)

LiveObserver = Callable[[Optional[str]], None]


class SurveyLineSession:
    """
    One survey line: the electrode spacing, the captured records in order,
    and the link to the meter.

    The session registers itself as the link's frame and disconnect handler.
    State changes are serialised by one re-entrant lock shared with the
    capture latch; the lock is released while a position lookup is running.
    """

    def __init__(
        self,
        link: Link,
        locator: Optional[Locator] = None,
        *,
        spacing: float = 5.0,
        thresholds: Thresholds = DEFAULT_THRESHOLDS,
        geotag: bool = True,
        locator_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        notify: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not math.isfinite(spacing) or spacing <= 0:
            raise ValueError(f"spacing must be positive, got {spacing}")
        self.link = link
        self.thresholds = thresholds
        self._notify_cb = notify
        self._lock = threading.RLock()
        self._spacing = float(spacing)
        self._records: List[MeasurementRecord] = []
        self._observers: List[LiveObserver] = []
        self._link_up = False
        self._latch = CaptureLatch(
            self._append,
            locator,
            geotag=geotag,
            locator_timeout_ms=locator_timeout_ms,
            clock=clock,
            notify=self._notify,
            lock=self._lock,
        )
        link.on_frame(self.handle_frame)
        link.on_disconnected(self.handle_disconnected)

    @property
    def spacing(self) -> float:
        return self._spacing

    @property
    def records(self) -> Tuple[MeasurementRecord, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def live_value(self) -> Optional[str]:
        return self._latch.live_value

    @property
    def state(self) -> LatchState:
        return self._latch.state

    @property
    def is_connected(self) -> bool:
        return self.link.is_connected

    def add_live_observer(self, observer: LiveObserver) -> None:
        self._observers.append(observer)

    def snapshot(self) -> SurveyLine:
        with self._lock:
            return SurveyLine(spacing=self._spacing, records=tuple(self._records), thresholds=self.thresholds)

    def connect(self) -> Optional[str]:
        try:
            identity = self.link.connect()
        except ConnectionError as exc:
            logger.warning("Connection failed: %s", exc)
            self._notify(f"Connection failed: {exc}")
            return None
        self._link_up = True
        self._notify(f"Connected to {identity}")
        return identity

    def disconnect(self) -> None:
        epoch = self._latch.epoch
        self.link.disconnect()
        if self._latch.epoch == epoch:
            # link did not report the disconnect itself
            self.handle_disconnected()

    def start_line(self, spacing: Optional[float] = None) -> bool:
        """
        Begin a new line: clear records and live value, disarm the latch, then
        send ``A=<spacing>`` and ``RESET`` to the meter. Returns ``False`` when
        the meter could not be told; the local line is started regardless.
        """
        new_spacing = self._spacing if spacing is None else float(spacing)
        if not math.isfinite(new_spacing) or new_spacing <= 0:
            raise ValueError(f"spacing must be positive, got {new_spacing}")
        with self._lock:
            self._latch.reset()
            self._records = []
            self._spacing = new_spacing
        self._publish_live(None)
        logger.info("Started new line (a=%s m)", format_spacing(new_spacing))
        sent = self._send(f"A={format_spacing(new_spacing)}") and self._send("RESET")
        self._notify(f"New line started (a = {format_spacing(new_spacing)} m)")
        return sent

    def advance(self) -> AdvanceOutcome:
        """Commit the live value now, or arm the latch and request a reading."""
        outcome = self._latch.advance()
        if outcome is AdvanceOutcome.ARMED:
            if not self._send("NEXT"):
                self._latch.disarm()
                return AdvanceOutcome.DISCARDED
        elif outcome is AdvanceOutcome.CAPTURED:
            self._announce_capture()
        return outcome

    def handle_frame(self, frame: str) -> None:
        self._link_up = True
        record = self._latch.on_frame(frame)
        self._publish_live(self._latch.live_value)
        if record is not None:
            self._announce_capture()

    def handle_disconnected(self) -> None:
        with self._lock:
            was_armed = self._latch.state is LatchState.ARMED
            self._latch.reset()
        self._publish_live(None)
        if was_armed:
            logger.info("Link lost, pending capture discarded")
        if self._link_up:
            self._link_up = False
            self._notify("Device disconnected")

    def _append(self, record: MeasurementRecord) -> None:
        self._records.append(record)

    def _send(self, command: str) -> bool:
        try:
            self.link.send(command)
        except LinkWriteError as exc:
            logger.warning("Command %s failed: %s", command, exc)
            self._notify(f"Command {command} failed: {exc}")
            return False
        return True

    def _announce_capture(self) -> None:
        with self._lock:
            count = len(self._records)
            value = self._records[-1].value if self._records else None
        logger.info("Measurement #%d captured: %s", count, value)
        self._notify(f"Measurement #{count} captured")

    def _publish_live(self, value: Optional[str]) -> None:
        for observer in list(self._observers):
            observer(value)

    def _notify(self, message: str) -> None:
        if self._notify_cb is not None:
            self._notify_cb(message)
