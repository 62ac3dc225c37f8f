from __future__ import annotations

import threading
import time
from typing import Optional

import numpy as np
import pytest

from ertsurvey.field.config import LocatorSettings
from ertsurvey.field.locator import (
    FixedLocator,
    Locator,
    NmeaSerialLocator,
    NullLocator,
    build_locator,
    lookup_position,
    parse_nmea_position,
)
from ertsurvey.models import Position

GGA = "$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47"
RMC = "$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A"


class SlowLocator(Locator):
    def __init__(self) -> None:
        self.release = threading.Event()

    def get_current_position(self, timeout_ms: int = 10000) -> Optional[Position]:
        self.release.wait(5.0)
        return Position(0.0, 0.0)


def test_parse_gga_and_rmc() -> None:
    for sentence in (GGA, RMC):
        position = parse_nmea_position(sentence)
        assert position is not None
        assert np.isclose(position.latitude, 48.1173)
        assert np.isclose(position.longitude, 11.516666, atol=1e-5)


def test_parse_southern_western_hemisphere() -> None:
    position = parse_nmea_position("$GNGGA,000000,3345.000,S,07030.000,W,1,05,1.0,10,M,0,M,,")
    assert position is not None
    assert position.latitude == pytest.approx(-33.75)
    assert position.longitude == pytest.approx(-70.5)


@pytest.mark.parametrize(
    "sentence",
    [
        "$GPGGA,123519,,,,,0,00,,,M,,M,,",
        GGA.replace("*47", "*00"),
        "$GPRMC,123519,V,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W",
        "$GPGSV,3,1,11,03,03,111,00",
        "garbage",
    ],
)
def test_parse_rejects_sentences_without_fix(sentence: str) -> None:
    assert parse_nmea_position(sentence) is None


def test_lookup_times_out_without_blocking() -> None:
    locator = SlowLocator()
    notices: list[str] = []
    started = time.monotonic()
    try:
        assert lookup_position(locator, 100, notify=notices.append) is None
    finally:
        locator.release.set()
    assert time.monotonic() - started < 2.0
    assert notices and "timed out" in notices[0]


def test_lookup_returns_fix() -> None:
    assert lookup_position(FixedLocator(1.5, 2.5), 1000) == Position(1.5, 2.5)
    assert lookup_position(NullLocator(), 1000) is None


def test_build_locator_kinds() -> None:
    assert isinstance(build_locator(LocatorSettings()), NullLocator)
    fixed = build_locator(LocatorSettings(kind="fixed", latitude=1.0, longitude=2.0, high_accuracy=False))
    assert isinstance(fixed, FixedLocator)
    assert fixed.high_accuracy is False
    assert isinstance(build_locator(LocatorSettings(kind="nmea", port="/dev/ttyGPS")), NmeaSerialLocator)
    with pytest.raises(ValueError):
        build_locator(LocatorSettings(kind="fixed"))


class FakeGps:
    def __init__(self, lines: list[bytes]):
        self._lines = lines

    def reset_input_buffer(self) -> None:
        pass

    def readline(self) -> bytes:
        return self._lines.pop(0) if self._lines else b""

    def close(self) -> None:
        pass


class FakeGpsModule:
    SerialException = RuntimeError

    def __init__(self, lines: list[bytes]):
        self._lines = lines

    def Serial(self, *args, **kwargs):
        return FakeGps(list(self._lines))


def test_nmea_locator_reads_first_fix(monkeypatch) -> None:
    fake = FakeGpsModule([b"$GPGSV,3,1,11,03,03,111,00\r\n", (GGA + "\r\n").encode("ascii")])
    monkeypatch.setattr("ertsurvey.field.locator.serial", fake)
    locator = NmeaSerialLocator("/dev/ttyGPS")
    position = locator.get_current_position(1000)
    locator.close()
    assert position is not None
    assert np.isclose(position.latitude, 48.1173)


def test_nmea_locator_without_fix_times_out(monkeypatch) -> None:
    monkeypatch.setattr("ertsurvey.field.locator.serial", FakeGpsModule([]))
    locator = NmeaSerialLocator("/dev/ttyGPS")
    with pytest.raises(TimeoutError):
        locator.get_current_position(50)
    assert lookup_position(locator, 50) is None


def test_high_accuracy_accepts_only_precise_gga() -> None:
    coarse_gga = "$GPGGA,123519,4807.038,N,01131.000,E,1,04,9.9,545.4,M,46.9,M,,"
    assert parse_nmea_position(GGA, high_accuracy=True) is not None
    assert parse_nmea_position(RMC, high_accuracy=True) is None
    assert parse_nmea_position(coarse_gga, high_accuracy=True) is None
    assert parse_nmea_position(coarse_gga) is not None


def test_nmea_locator_honours_accuracy_setting(monkeypatch) -> None:
    lines = [(RMC + "\r\n").encode("ascii"), b"$GPGGA,123520,4807.100,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,\r\n"]
    monkeypatch.setattr("ertsurvey.field.locator.serial", FakeGpsModule(lines))
    precise = build_locator(LocatorSettings(kind="nmea", port="/dev/ttyGPS"))
    quick = build_locator(LocatorSettings(kind="nmea", port="/dev/ttyGPS", high_accuracy=False))
    assert np.isclose(precise.get_current_position(1000).latitude, 48.118333, atol=1e-5)
    assert np.isclose(quick.get_current_position(1000).latitude, 48.1173)


class HungLocator(Locator):
    def __init__(self, release: threading.Event) -> None:
        self.release = release

    def get_current_position(self, timeout_ms: int = 10000) -> Optional[Position]:
        self.release.wait(10.0)
        return None


def test_overrunning_lookups_do_not_starve_later_ones() -> None:
    release = threading.Event()
    try:
        for _ in range(6):
            assert lookup_position(HungLocator(release), 50) is None
        notices: list[str] = []
        assert lookup_position(FixedLocator(45.0, 4.0), 500, notify=notices.append) == Position(45.0, 4.0)
        assert notices == []
    finally:
        release.set()


def test_lookup_reports_locator_errors() -> None:
    class BrokenLocator(Locator):
        def get_current_position(self, timeout_ms: int = 10000) -> Optional[Position]:
            raise OSError("receiver unplugged")

    notices: list[str] = []
    assert lookup_position(BrokenLocator(), 500, notify=notices.append) is None
    assert notices == ["Position lookup failed: receiver unplugged"]
