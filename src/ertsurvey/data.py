"""Loading of plain-text ``ERT LINE`` exports."""
from __future__ import annotations

import math
from pathlib import Path

from .classification import DEFAULT_THRESHOLDS, Thresholds
from .export import LINE_HEADER, SurveyLine
from .models import MeasurementRecord


def load_line_file(path: str | Path, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> SurveyLine:
    """Load a line written by :func:`ertsurvey.export.to_line_text`.

    Parameters
    ----------
    path:
        Text file starting with ``ERT LINE``, the spacing, and the record count,
        followed by one raw reading per line.

    Returns
    -------
    SurveyLine
        Records carry no position and a ``captured_at`` of the file's mtime.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    lines = path.read_text(encoding="utf-8").splitlines()
    if len(lines) < 3 or lines[0].strip() != LINE_HEADER:
        raise ValueError(f"{path} is not an '{LINE_HEADER}' file")
    try:
        spacing = float(lines[1].strip().replace(",", "."))
        count = int(lines[2].strip())
    except ValueError as exc:
        raise ValueError(f"{path}: malformed spacing or count") from exc
    if not math.isfinite(spacing) or spacing <= 0:
        raise ValueError(f"{path}: spacing must be a positive number, got {lines[1].strip()!r}")

    values = [line.strip() for line in lines[3:] if line.strip()]
    if len(values) != count:
        raise ValueError(f"{path}: header declares {count} readings, found {len(values)}")

    captured_at = path.stat().st_mtime
    records = tuple(
        MeasurementRecord(value=value, latitude=None, longitude=None, captured_at=captured_at)
        for value in values
    )
    return SurveyLine(spacing=spacing, records=records, thresholds=thresholds)
