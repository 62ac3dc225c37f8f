"""Position sources used to geotag measurements."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Iterable, Optional, Tuple

import serial

from ..models import Position
from .config import LocatorSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000
MAX_HDOP = 5.0


class Locator:
    """Contract: return the current position or ``None`` within *timeout_ms*."""

    # sources that can trade fix quality for speed read this
    high_accuracy: bool = True

    def get_current_position(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Optional[Position]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullLocator(Locator):
    def get_current_position(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Optional[Position]:
        return None


class FixedLocator(Locator):
    """Reports a surveyed station position, e.g. the start of the line."""

    def __init__(self, latitude: float, longitude: float):
        self.position = Position(latitude=float(latitude), longitude=float(longitude))

    def get_current_position(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Optional[Position]:
        return self.position


def _nmea_checksum_ok(sentence: str) -> bool:
    if "*" not in sentence:
        return True
    body, checksum = sentence[1:].split("*", 1)
    value = 0
    for char in body:
        value ^= ord(char)
    try:
        return value == int(checksum[:2], 16)
    except ValueError:
        return False


def _nmea_degrees(value: str, hemisphere: str) -> float:
    # ddmm.mmmm / dddmm.mmmm
    head, _, _ = value.partition(".")
    degree_digits = len(head) - 2
    degrees = float(value[:degree_digits])
    minutes = float(value[degree_digits:])
    result = degrees + minutes / 60.0
    return -result if hemisphere in {"S", "W"} else result


def parse_nmea_position(sentence: str, *, high_accuracy: bool = False) -> Optional[Position]:
    """
    Extract a fix from a GGA or RMC sentence; ``None`` when there is no valid fix.

    With *high_accuracy* only GGA fixes are accepted (RMC carries no fix
    quality), and only when the reported HDOP is at most ``MAX_HDOP``.
    """
    sentence = sentence.strip()
    if not sentence.startswith("$") or not _nmea_checksum_ok(sentence):
        return None
    fields = sentence.split("*", 1)[0].split(",")
    kind = fields[0][-3:]
    try:
        if kind == "GGA" and len(fields) > 6:
            if fields[6] in {"", "0"} or not fields[2] or not fields[4]:
                return None
            if high_accuracy and len(fields) > 8 and fields[8] and float(fields[8]) > MAX_HDOP:
                return None
            return Position(_nmea_degrees(fields[2], fields[3]), _nmea_degrees(fields[4], fields[5]))
        if kind == "RMC" and len(fields) > 6 and not high_accuracy:
            if fields[2] != "A" or not fields[3] or not fields[5]:
                return None
            return Position(_nmea_degrees(fields[3], fields[4]), _nmea_degrees(fields[5], fields[6]))
    except ValueError:
        logger.debug("Malformed NMEA sentence: %s", sentence)
    return None


class NmeaSerialLocator(Locator):
    """Reads GGA/RMC sentences from a serial GNSS receiver until a fix or the timeout."""

    def __init__(
        self, port: str, baudrate: int = 9600, *, read_timeout: float = 0.5, high_accuracy: bool = True
    ):
        self.high_accuracy = high_accuracy
        self.port = port
        self.baudrate = baudrate
        self.read_timeout = read_timeout
        self._serial = None
        self._lock = threading.Lock()

    def get_current_position(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Optional[Position]:
        deadline = time.monotonic() + timeout_ms / 1000.0
        with self._lock:
            handle = self._ensure_open()
            handle.reset_input_buffer()
            while time.monotonic() < deadline:
                raw = handle.readline()
                if not raw:
                    continue
                position = parse_nmea_position(
                    raw.decode("ascii", errors="ignore"), high_accuracy=self.high_accuracy
                )
                if position is not None:
                    return position
        raise TimeoutError(f"No GNSS fix from {self.port} within {timeout_ms} ms")

    def close(self) -> None:
        with self._lock:
            if self._serial is not None:
                try:
                    self._serial.close()
                except (serial.SerialException, OSError):
                    pass
                self._serial = None

    def _ensure_open(self):
        if self._serial is None:
            self._serial = serial.Serial(port=self.port, baudrate=self.baudrate, timeout=self.read_timeout)
        return self._serial


def build_locator(settings: LocatorSettings) -> Locator:
    kind = settings.kind.lower()
    if kind == "fixed":
        if settings.latitude is None or settings.longitude is None:
            raise ValueError("Fixed locator requires latitude and longitude")
        locator: Locator = FixedLocator(settings.latitude, settings.longitude)
    elif kind == "nmea":
        if not settings.port:
            raise ValueError("NMEA locator requires a serial port")
        locator = NmeaSerialLocator(settings.port, settings.baudrate)
    elif kind == "none":
        locator = NullLocator()
    else:
        raise ValueError(f"Unknown locator kind '{settings.kind}'")
    locator.high_accuracy = settings.high_accuracy
    return locator


def lookup_position(
    locator: Locator,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    *,
    notify: Optional[Callable[[str], None]] = None,
) -> Optional[Position]:
    """
    Query *locator* and wait at most *timeout_ms* for an answer.

    Every lookup runs on its own daemon thread, so a receiver that never
    answers neither delays later lookups nor keeps the process alive; its
    late result is discarded. Failures and timeouts are reported through
    *notify* and yield ``None``.
    """
    answer: "queue.Queue[Tuple[bool, Any]]" = queue.Queue(maxsize=1)

    def _query() -> None:
        try:
            answer.put((True, locator.get_current_position(timeout_ms)))
        except Exception as exc:  # handed to the waiting caller
            answer.put((False, exc))

    threading.Thread(target=_query, name="ert-locator", daemon=True).start()
    try:
        ok, result = answer.get(timeout=timeout_ms / 1000.0)
    except queue.Empty:
        message = f"Position lookup timed out after {timeout_ms} ms"
    else:
        if ok:
            return result
        message = f"Position lookup failed: {result}"
    logger.warning(message)
    if notify is not None:
        notify(message)
    return None


def walking_positions(
    start: Position, step_lat: float, step_lon: float
) -> Iterable[Position]:
    """Endless sequence of positions moving by a fixed step, for simulations."""
    index = 0
    while True:
        yield Position(start.latitude + index * step_lat, start.longitude + index * step_lon)
        index += 1


class SequenceLocator(Locator):
    """Yields the next position of *positions* on every lookup."""

    def __init__(self, positions: Iterable[Position]):
        self._positions = iter(positions)
        self._lock = threading.Lock()

    def get_current_position(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Optional[Position]:
        with self._lock:
            return next(self._positions, None)
