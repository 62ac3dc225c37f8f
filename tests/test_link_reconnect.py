from __future__ import annotations

import queue
import threading
import time

import pytest

from ertsurvey.field.config import HostRuntime, LinkSettings
from ertsurvey.field.link import LinkWriteError, SerialLink


class FakeSerialInstance:
    def __init__(self, module: "FakeSerialModule", lines: list[bytes], unplug: bool):
        self._module = module
        self._lines = lines
        self._unplug = unplug

    def readline(self) -> bytes:
        if self._lines:
            return self._lines.pop(0)
        if self._unplug:
            self._unplug = False
            raise self._module.SerialException("mock unplug")
        time.sleep(0.01)
        return b""

    def write(self, data: bytes) -> int:
        self._module.written.append(data)
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class FakeSerialModule:
    def __init__(self, lines: list[bytes], *, fail_first_open: bool = False):
        self.calls = 0
        self.written: list[bytes] = []
        self._lines = lines
        self._fail_first_open = fail_first_open
        self.SerialException = RuntimeError

    def Serial(self, *args, **kwargs):
        self.calls += 1
        if self._fail_first_open and self.calls == 1:
            raise self.SerialException("mock busy port")
        # The first connection drops after its lines; later ones stay up.
        return FakeSerialInstance(self, list(self._lines), unplug=self.calls == 1)


def _runtime() -> HostRuntime:
    return HostRuntime(queue_maxsize=4, reconnect_initial_sec=0.01, reconnect_max_sec=0.02, stats_log_interval=1)


def test_connect_failure_raises_connection_error(monkeypatch):
    fake_serial = FakeSerialModule([], fail_first_open=True)
    monkeypatch.setattr("ertsurvey.field.link.serial", fake_serial)
    link = SerialLink(LinkSettings(port="/dev/ttyFAKE", timeout=0.05), _runtime())
    with pytest.raises(ConnectionError):
        link.connect()
    assert not link.is_connected


def test_serial_link_reconnects_after_unplug(monkeypatch):
    fake_serial = FakeSerialModule([b"12,5\r\n", b"13.0\n"])
    monkeypatch.setattr("ertsurvey.field.link.serial", fake_serial)

    frames: "queue.Queue[str]" = queue.Queue()
    disconnected = threading.Event()
    link = SerialLink(LinkSettings(port="/dev/ttyFAKE", timeout=0.05), _runtime())
    link.on_frame(frames.put)
    link.on_disconnected(disconnected.set)
    assert link.connect() == "/dev/ttyFAKE"
    try:
        received = [frames.get(timeout=1.0) for _ in range(4)]
        assert received == ["12,5", "13.0", "12,5", "13.0"]
        assert disconnected.is_set()
        assert fake_serial.calls >= 2
        assert link.stats()["reconnects"] >= 1
    finally:
        link.disconnect()


def test_send_appends_newline_and_requires_connection(monkeypatch):
    fake_serial = FakeSerialModule([])
    monkeypatch.setattr("ertsurvey.field.link.serial", fake_serial)
    link = SerialLink(LinkSettings(port="/dev/ttyFAKE", timeout=0.05), _runtime(), auto_reconnect=False)
    with pytest.raises(LinkWriteError):
        link.send("NEXT")
    link.connect()
    try:
        link.send("A=5")
        link.send("RESET")
        assert fake_serial.written[:2] == [b"A=5\n", b"RESET\n"]
    finally:
        link.disconnect()


def test_frame_handler_is_replaced_not_accumulated(monkeypatch):
    fake_serial = FakeSerialModule([b"1.0\n"])
    monkeypatch.setattr("ertsurvey.field.link.serial", fake_serial)
    first: "queue.Queue[str]" = queue.Queue()
    second: "queue.Queue[str]" = queue.Queue()
    link = SerialLink(LinkSettings(port="/dev/ttyFAKE", timeout=0.05), _runtime(), auto_reconnect=False)
    link.on_frame(first.put)
    link.on_frame(second.put)
    link.connect()
    try:
        assert second.get(timeout=1.0) == "1.0"
        assert first.empty()
    finally:
        link.disconnect()
