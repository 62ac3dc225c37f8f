from __future__ import annotations

import math
import threading
from typing import Optional

import pytest

from ertsurvey.field.capture import AdvanceOutcome, CaptureLatch, LatchState
from ertsurvey.field.link import MemoryLink
from ertsurvey.field.locator import FixedLocator, Locator
from ertsurvey.field.session import SurveyLineSession
from ertsurvey.models import MeasurementRecord, Position


class BlockingLocator(Locator):
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def get_current_position(self, timeout_ms: int = 10000) -> Optional[Position]:
        self.calls += 1
        self.started.set()
        self.release.wait(5.0)
        return Position(latitude=45.0, longitude=4.0)


class FailingLocator(Locator):
    def get_current_position(self, timeout_ms: int = 10000) -> Optional[Position]:
        raise PermissionError("location permission denied")


def make_session(locator: Optional[Locator] = None, **kwargs) -> tuple[SurveyLineSession, MemoryLink]:
    link = MemoryLink()
    session = SurveyLineSession(link, locator, spacing=5.0, **kwargs)
    session.connect()
    return session, link


def test_latch_frames_only_update_live_value_when_idle() -> None:
    records: list[MeasurementRecord] = []
    latch = CaptureLatch(records.append)
    assert latch.on_frame("1.2") is None
    assert latch.on_frame("1.3") is None
    assert latch.live_value == "1.3"
    assert records == []
    assert latch.state is LatchState.IDLE


def test_latch_advance_with_live_value_captures_synchronously() -> None:
    records: list[MeasurementRecord] = []
    latch = CaptureLatch(records.append, clock=lambda: 123.0)
    latch.on_frame("4,75")
    assert latch.advance() is AdvanceOutcome.CAPTURED
    assert latch.state is LatchState.IDLE
    assert records == [MeasurementRecord(value="4,75", latitude=None, longitude=None, captured_at=123.0)]


def test_at_most_one_capture_per_arm() -> None:
    session, link = make_session()
    session.start_line(5.0)
    assert session.advance() is AdvanceOutcome.ARMED
    for frame in ["10.1", "10.2", "10.3", "10.4"]:
        link.push(frame)
    assert [r.value for r in session.records] == ["10.1"]
    assert session.live_value == "10.4"
    assert session.state is LatchState.IDLE


def test_advance_requests_reading_only_when_nothing_displayed() -> None:
    session, link = make_session()
    session.start_line(2.5)
    assert link.sent == ["A=2.5", "RESET"]
    session.advance()
    assert link.sent[-1] == "NEXT"
    link.push("3.0")
    sent_before = list(link.sent)
    assert session.advance() is AdvanceOutcome.CAPTURED
    assert link.sent == sent_before
    assert [r.value for r in session.records] == ["3.0", "3.0"]


def test_second_advance_while_armed_is_noop() -> None:
    session, link = make_session()
    assert session.advance() is AdvanceOutcome.ARMED
    assert session.advance() is AdvanceOutcome.IGNORED
    assert link.sent.count("NEXT") == 1
    link.push("8")
    assert len(session.records) == 1


def test_disconnect_while_armed_discards_capture() -> None:
    session, link = make_session()
    session.advance()
    assert session.state is LatchState.ARMED
    link.disconnect()
    assert session.state is LatchState.IDLE
    assert session.live_value is None
    link.connect()
    link.push("12")
    assert session.records == ()


def test_start_line_during_lookup_does_not_leak_into_new_line() -> None:
    locator = BlockingLocator()
    session, link = make_session(locator, locator_timeout_ms=5000)
    session.advance()
    worker = threading.Thread(target=link.push, args=("12.5",))
    worker.start()
    assert locator.started.wait(2.0)
    assert session.advance() is AdvanceOutcome.IGNORED
    session.start_line(2.0)
    locator.release.set()
    worker.join(2.0)
    assert not worker.is_alive()
    assert session.records == ()
    assert session.state is LatchState.IDLE
    assert session.live_value is None
    assert session.spacing == 2.0


def test_frames_during_lookup_do_not_capture_twice() -> None:
    locator = BlockingLocator()
    session, link = make_session(locator, locator_timeout_ms=5000)
    session.advance()
    worker = threading.Thread(target=link.push, args=("1.0",))
    worker.start()
    assert locator.started.wait(2.0)
    link.push("2.0")
    locator.release.set()
    worker.join(2.0)
    assert [r.value for r in session.records] == ["1.0"]
    assert session.live_value == "2.0"
    assert locator.calls == 1


def test_locator_timeout_still_saves_record() -> None:
    locator = BlockingLocator()
    notices: list[str] = []
    session, link = make_session(locator, locator_timeout_ms=100, notify=notices.append)
    try:
        session.advance()
        link.push("5.5")
    finally:
        locator.release.set()
    assert len(session.records) == 1
    record = session.records[0]
    assert record.value == "5.5"
    assert record.latitude is None and record.longitude is None
    assert any("timed out" in notice for notice in notices)


def test_locator_failure_still_saves_record() -> None:
    session, link = make_session(FailingLocator())
    link.push("7")
    assert session.advance() is AdvanceOutcome.CAPTURED
    assert session.records[0].latitude is None


def test_geotagging_attaches_position() -> None:
    session, link = make_session(FixedLocator(48.8566, 2.3522))
    link.push("9.9")
    session.advance()
    record = session.records[0]
    assert (record.latitude, record.longitude) == (48.8566, 2.3522)


def test_geotagging_disabled_skips_locator() -> None:
    locator = BlockingLocator()
    session, link = make_session(locator, geotag=False)
    link.push("9.9")
    session.advance()
    assert locator.calls == 0
    assert session.records[0].latitude is None


def test_failed_next_request_disarms_latch() -> None:
    session, link = make_session()
    link.fail_writes = True
    assert session.advance() is AdvanceOutcome.DISCARDED
    assert session.state is LatchState.IDLE


def test_start_line_keeps_local_reset_when_link_is_down() -> None:
    notices: list[str] = []
    session, link = make_session(notify=notices.append)
    link.push("1")
    session.advance()
    link.fail_writes = True
    assert session.start_line(10.0) is False
    assert session.records == ()
    assert session.spacing == 10.0
    assert any("failed" in notice for notice in notices)


def test_records_keep_capture_order() -> None:
    session, link = make_session()
    values = ["5", "1", "5", "3"]
    for value in values:
        link.push(value)
        session.advance()
    assert [r.value for r in session.records] == values


@pytest.mark.parametrize("spacing", [math.nan, math.inf, 0.0, -2.0])
def test_session_requires_finite_positive_spacing(spacing: float) -> None:
    with pytest.raises(ValueError):
        SurveyLineSession(MemoryLink(), spacing=spacing)
    session, link = make_session()
    with pytest.raises(ValueError):
        session.start_line(spacing)
    assert session.spacing == 5.0
    assert "RESET" not in link.sent
