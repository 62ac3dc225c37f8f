"""
Transport adapters for the resistivity meter.

Every adapter honours the same contract: ``connect`` returns the device
identity or raises :class:`ConnectionError`, ``send`` writes one
newline-terminated command or raises :class:`LinkWriteError`, and the frame
and disconnect handlers are single registrations replaced on each call.
Handlers may be invoked from a background thread.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, TextIO

import serial

from .config import HostRuntime, LinkSettings
from .frames import FrameSplitter

logger = logging.getLogger(__name__)

FrameHandler = Callable[[str], None]
DisconnectHandler = Callable[[], None]


class LinkWriteError(OSError):
    """A command could not be delivered to the device."""


class Link:
    def __init__(self) -> None:
        self._frame_handler: Optional[FrameHandler] = None
        self._disconnect_handler: Optional[DisconnectHandler] = None

    @property
    def is_connected(self) -> bool:
        raise NotImplementedError

    def connect(self) -> str:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def send(self, command: str) -> None:
        raise NotImplementedError

    def on_frame(self, handler: Optional[FrameHandler]) -> None:
        self._frame_handler = handler

    def on_disconnected(self, handler: Optional[DisconnectHandler]) -> None:
        self._disconnect_handler = handler

    def _dispatch_frame(self, frame: str) -> None:
        handler = self._frame_handler
        if handler is not None:
            handler(frame)

    def _dispatch_disconnected(self) -> None:
        handler = self._disconnect_handler
        if handler is not None:
            handler()


class SerialLink(Link):
    """
    Serial-port link (USB CDC or a Bluetooth RFCOMM/SPP bridge).

    A daemon thread reads lines and dispatches frames. When the port fails the
    disconnect handler fires and the thread reopens it with exponential
    back-off until :meth:`disconnect` is called.
    """

    def __init__(
        self,
        settings: LinkSettings,
        runtime: Optional[HostRuntime] = None,
        *,
        auto_reconnect: bool = True,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.runtime = runtime or HostRuntime()
        self.auto_reconnect = auto_reconnect
        self.splitter = FrameSplitter()
        self.last_exception: Optional[Exception] = None
        self._handle = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._write_lock = threading.Lock()
        self._reconnects = 0

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    def connect(self) -> str:
        if self._thread is not None and self._thread.is_alive():
            return self.settings.port
        try:
            self._handle = self._open_serial()
        except serial.SerialException as exc:
            self.last_exception = exc
            raise ConnectionError(f"Cannot open {self.settings.port}: {exc}") from exc
        logger.info("Connected to %s", self.settings.port)
        self._stop_event.clear()
        self.splitter.reset()
        self._thread = threading.Thread(target=self._read_loop, name="ert-serial-reader", daemon=True)
        self._thread.start()
        return self.settings.port

    def disconnect(self) -> None:
        self._stop_event.set()
        was_connected = self._handle is not None
        self._close_handle()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.settings.timeout, 0.1) * 2)
        self._thread = None
        if was_connected:
            logger.info("Disconnected from %s", self.settings.port)
            self._dispatch_disconnected()

    def send(self, command: str) -> None:
        payload = (command.strip() + "\n").encode("utf-8")
        with self._write_lock:
            handle = self._handle
            if handle is None:
                raise LinkWriteError(f"Not connected to {self.settings.port}")
            try:
                handle.write(payload)
                handle.flush()
            except (serial.SerialException, OSError) as exc:
                raise LinkWriteError(f"Write to {self.settings.port} failed: {exc}") from exc
        logger.debug("Sent %r to %s", command, self.settings.port)

    def stats(self) -> dict[str, int]:
        stats = self.splitter.stats()
        stats["reconnects"] = self._reconnects
        return stats

    def _read_loop(self) -> None:  # pragma: no cover - exercised via integration-style tests
        initial_delay = max(self.runtime.reconnect_initial_sec, 0.01)
        max_delay = max(self.runtime.reconnect_max_sec, initial_delay)
        backoff = initial_delay
        while not self._stop_event.is_set():
            handle = self._handle
            if handle is None:
                if not self.auto_reconnect:
                    break
                try:
                    self._handle = self._open_serial()
                except serial.SerialException as exc:
                    self.last_exception = exc
                    wait_time = min(backoff, max_delay)
                    logger.info("Reconnecting to %s in %.1fs", self.settings.port, wait_time)
                    self._stop_event.wait(wait_time)
                    backoff = min(backoff * 2, max_delay)
                    continue
                self._reconnects += 1
                backoff = initial_delay
                self.splitter.reset()
                logger.info("Reconnected to %s", self.settings.port)
                continue
            try:
                raw = handle.readline()
            except serial.SerialException as exc:
                if self._stop_event.is_set():
                    break
                self.last_exception = exc
                logger.warning("Serial error (%s): %s", self.settings.port, exc)
                self._close_handle()
                self._dispatch_disconnected()
                continue
            if not raw:
                continue
            for frame in self.splitter.feed(raw):
                self._dispatch_frame(frame)

    def _close_handle(self) -> None:
        with self._write_lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.close()
            except (serial.SerialException, OSError) as exc:
                logger.debug("Error closing %s: %s", self.settings.port, exc)

    def _open_serial(self):
        return serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )


class StreamLink(Link):
    """
    Replays frames from a text stream (a capture file or stdin).

    Commands are echoed to *command_sink* when one is given. End of stream is
    reported as a disconnect.
    """

    def __init__(self, stream: TextIO, *, name: str = "stream", command_sink: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream
        self.name = name
        self.command_sink = command_sink
        self.splitter = FrameSplitter()
        self._connected = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> str:
        if self._connected:
            return self.name
        self._connected = True
        self._thread = threading.Thread(target=self._replay, name="ert-stream-reader", daemon=True)
        self._thread.start()
        return self.name

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._dispatch_disconnected()

    def send(self, command: str) -> None:
        if not self._connected:
            raise LinkWriteError(f"{self.name} is not connected")
        if self.command_sink is not None:
            self.command_sink.write(command.strip() + "\n")
            self.command_sink.flush()
        logger.debug("Command %r on %s", command, self.name)

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _replay(self) -> None:
        for frame in self.splitter.iter_lines(self.stream):
            if not self._connected:
                return
            self._dispatch_frame(frame)
        self.disconnect()


class MemoryLink(Link):
    """
    In-process link used by the demo and tests.

    Frames are injected with :meth:`push`; an optional *responder* receives
    every sent command and may return frames the "device" emits in reply.
    """

    def __init__(
        self,
        *,
        name: str = "memory",
        responder: Optional[Callable[[str], List[str]]] = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.responder = responder
        self.sent: List[str] = []
        self.fail_writes = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> str:
        self._connected = True
        return self.name

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._dispatch_disconnected()

    def send(self, command: str) -> None:
        if not self._connected:
            raise LinkWriteError(f"{self.name} is not connected")
        if self.fail_writes:
            raise LinkWriteError(f"{self.name} rejected {command!r}")
        self.sent.append(command)
        if self.responder is not None:
            for frame in self.responder(command):
                self.push(frame)

    def push(self, frame: str) -> None:
        if self._connected:
            self._dispatch_frame(frame.strip())
