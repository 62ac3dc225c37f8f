"""Synthetic survey line for trying the toolkit without a meter."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import numpy as np

from .export import ExportKind, SurveyLine, write_export
from .field.link import MemoryLink
from .field.locator import SequenceLocator, walking_positions
from .field.session import SurveyLineSession
from .models import Position


def create_demo_readings(points: int = 24, spacing: float = 5.0) -> List[str]:
    """
    Resistance readings over a resistive background with a conductive
    (wet) zone and a strongly resistive cavity along the line.
    """
    rng = np.random.default_rng(42)
    rho = np.full(points, 250.0)
    positions = np.arange(points)
    rho += 180.0 * np.exp(-0.5 * ((positions - points * 0.7) / 1.5) ** 2) * 6.0
    rho *= np.where((positions > points * 0.2) & (positions < points * 0.35), 0.12, 1.0)
    rho *= rng.lognormal(mean=0.0, sigma=0.08, size=points)
    resistance = rho / (2.0 * np.pi * spacing)
    # The meter reports with a comma decimal separator.
    return [f"{value:.3f}".replace(".", ",") for value in resistance]


def run_demo_line(
    points: int = 24,
    spacing: float = 5.0,
    start: Position = Position(latitude=45.7640, longitude=4.8357),
) -> SurveyLine:
    readings = iter(create_demo_readings(points, spacing))

    def respond(command: str) -> List[str]:
        if command == "NEXT":
            value = next(readings, None)
            return [value] if value is not None else []
        return []

    link = MemoryLink(name="ESP32_ERT (simulated)", responder=respond)
    locator = SequenceLocator(walking_positions(start, step_lat=0.0, step_lon=spacing / 78_000.0))
    session = SurveyLineSession(link, locator, spacing=spacing, geotag=True, locator_timeout_ms=2000)
    session.connect()
    session.start_line(spacing)
    # First point: nothing on display yet, so the latch arms and requests NEXT.
    session.advance()
    for value in readings:
        # The meter streams a new reading; the operator confirms what is shown.
        link.push(value)
        session.advance()
    return session.snapshot()


def run_demo(out_dir: Path, points: int = 24, spacing: float = 5.0) -> Dict[ExportKind, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    line = run_demo_line(points, spacing)
    return {kind: write_export(line, kind, out_dir) for kind in ExportKind}
