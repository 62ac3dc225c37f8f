from __future__ import annotations

import logging
import queue
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, TextIO, Tuple

import typer

from ..export import ExportKind, ExportPreconditionError, write_export
from ..metrics import summarize_line
from .capture import AdvanceOutcome
from .config import SurveyConfig, load_config
from .link import Link, SerialLink, StreamLink
from .locator import Locator, build_locator
from .session import SurveyLineSession
from .stability import StabilityIndicator

logger = logging.getLogger(__name__)

Event = Tuple[str, Optional[str]]

HELP_TEXT = (
    "commands: start [a] | next | status | export [csv|kml|txt|all] | "
    "connect | disconnect | quit"
)


class SurveyHost:
    """
    Field orchestrator: link notifications and operator commands are queued
    and handled one at a time on the thread calling :meth:`run`.
    """

    def __init__(
        self,
        config: SurveyConfig,
        link: Link,
        locator: Optional[Locator] = None,
        *,
        echo: Callable[[str], None] = typer.echo,
    ) -> None:
        self.config = config
        self.link = link
        self.locator = locator
        self.echo = echo
        self.session = SurveyLineSession(
            link,
            locator,
            spacing=config.spacing,
            thresholds=config.thresholds,
            geotag=config.geotag,
            locator_timeout_ms=config.locator.timeout_ms,
            notify=self._notify,
        )
        self.stability = StabilityIndicator(config.stability_window_ms)
        self.session.add_live_observer(self.stability)
        self._events: "queue.Queue[Event]" = queue.Queue(maxsize=config.host.queue_maxsize)
        self._stop_event = threading.Event()
        self._dropped = 0
        self._processed = 0
        # Route link callbacks through the queue instead of straight into the session.
        link.on_frame(self._on_frame)
        link.on_disconnected(self._on_disconnected)

    def submit(self, command: str) -> None:
        self._events.put(("command", command))

    def stop(self) -> None:
        self._stop_event.set()

    def run(self, commands: Optional[TextIO] = None) -> None:
        if commands is not None:
            reader = threading.Thread(target=self._read_commands, args=(commands,), daemon=True)
            reader.start()
        self.session.connect()
        self.echo(HELP_TEXT)
        interval_sec = max(float(self.config.host.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec
        try:
            while not self._stop_event.is_set():
                try:
                    event = self._events.get(timeout=1.0)
                except queue.Empty:
                    event = None
                if event is not None and not self.dispatch(event):
                    break
                if time.monotonic() >= next_log:
                    self._log_stats()
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping field host (Ctrl+C)")
        finally:
            self.link.disconnect()
            if self.locator is not None:
                self.locator.close()
            self._log_stats()

    def drain(self) -> None:
        """Handle every queued event without blocking."""
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            self.dispatch(event)

    def dispatch(self, event: Event) -> bool:
        kind, payload = event
        if kind == "frame" and payload is not None:
            self._processed += 1
            self.session.handle_frame(payload)
        elif kind == "disconnected":
            self.session.handle_disconnected()
        elif kind == "command" and payload is not None:
            return self.execute(payload)
        return True

    def execute(self, command: str) -> bool:
        """Run one operator command; returns ``False`` when the host should stop."""
        parts = command.strip().split()
        if not parts:
            return True
        verb, args = parts[0].lower(), parts[1:]
        if verb in {"quit", "exit", "q"}:
            return False
        if verb in {"start", "line"}:
            spacing = None
            if args:
                try:
                    spacing = float(args[0].replace(",", "."))
                    self.session.start_line(spacing)
                except ValueError as exc:
                    self.echo(f"invalid spacing: {exc}")
                    return True
            else:
                self.session.start_line(spacing)
        elif verb in {"next", "n"}:
            outcome = self.session.advance()
            if outcome is AdvanceOutcome.ARMED:
                self.echo("waiting for next reading")
            elif outcome is AdvanceOutcome.IGNORED:
                self.echo("capture already pending")
        elif verb == "status":
            self._print_status()
        elif verb == "export":
            self.export(args[0] if args else "all")
        elif verb == "connect":
            self.session.connect()
        elif verb == "disconnect":
            self.session.disconnect()
        else:
            self.echo(f"unknown command '{verb}'. {HELP_TEXT}")
        return True

    def export(self, which: str = "all") -> List[Path]:
        if which == "all":
            kinds = list(ExportKind)
        else:
            try:
                kinds = [ExportKind(which.lower())]
            except ValueError:
                self.echo(f"unknown export format '{which}'")
                return []
        line = self.session.snapshot()
        written: List[Path] = []
        for kind in kinds:
            try:
                path = write_export(line, kind, self.config.output_dir)
            except ExportPreconditionError as exc:
                self._notify(str(exc))
                continue
            except OSError as exc:
                logger.warning("Export %s failed: %s", kind.value, exc)
                self._notify(f"Export {kind.value} failed: {exc}")
                continue
            written.append(path)
            self._notify(f"Exported {len(line.records)} measurements to {path}")
        return written

    def _print_status(self) -> None:
        summary = summarize_line(self.session.snapshot())
        live = self.session.live_value or "-"
        self.echo(
            f"connected={self.session.is_connected} a={self.session.spacing:g} m "
            f"records={summary.count} geotagged={summary.geotagged} "
            f"live={live} ({self.stability.status().value}) latch={self.session.state.value}"
        )
        if summary.count:
            counts = ", ".join(f"{category.value}={count}" for category, count in summary.categories.items())
            self.echo(
                f"rho_a min={summary.resistivity_min:.2f} max={summary.resistivity_max:.2f} "
                f"mean={summary.resistivity_mean:.2f} Ω·m; {counts}"
            )

    def _on_frame(self, frame: str) -> None:
        try:
            self._events.put(("frame", frame), timeout=1.0)
        except queue.Full:
            self._dropped += 1
            logger.warning("Event queue full (%d), dropping frame", self._events.qsize())

    def _on_disconnected(self) -> None:
        try:
            self._events.put(("disconnected", None), timeout=1.0)
        except queue.Full:
            self._dropped += 1
            logger.warning("Event queue full (%d), dropping disconnect notice", self._events.qsize())

    def _read_commands(self, stream: TextIO) -> None:
        for line in stream:
            self.submit(line)
        self.submit("quit")

    def _notify(self, message: str) -> None:
        self.echo(f"[{time.strftime('%H:%M:%S')}] {message}")

    def _log_stats(self) -> None:
        logger.info(
            "processed=%d dropped=%d records=%d",
            self._processed,
            self._dropped,
            len(self.session.records),
        )


def build_link(config: SurveyConfig, replay: Optional[Path] = None) -> Link:
    if replay is not None:
        return StreamLink(replay.open("r", encoding="utf-8"), name=str(replay))
    return SerialLink(config.link, config.host)


app = typer.Typer(add_completion=False, help="ERT field acquisition host.")


@app.command()
def run(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device of the meter."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to survey config JSON."),
    spacing: Optional[float] = typer.Option(None, "--spacing", "-a", help="Electrode spacing in metres."),
    replay: Optional[Path] = typer.Option(
        None, "--replay", exists=True, readable=True, help="Replay frames from a capture file instead of a port."
    ),
    output_dir: Optional[Path] = typer.Option(None, "--out", help="Directory for export files."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set locator.kind=fixed --set locator.latitude=45.1",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
):
    """Acquire a survey line interactively; operator commands are read from stdin."""

    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    overrides = list(override or [])
    if port is not None:
        overrides.append(f"link.port={port}")
    if baudrate is not None:
        overrides.append(f"link.baudrate={baudrate}")
    if spacing is not None:
        overrides.append(f"spacing={spacing}")
    if output_dir is not None:
        overrides.append(f"output_dir={output_dir}")
    try:
        cfg = load_config(config_path, overrides or None)
        locator = build_locator(cfg.locator)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    link = build_link(cfg, replay)
    host = SurveyHost(cfg, link, locator)
    host.run(commands=sys.stdin)
