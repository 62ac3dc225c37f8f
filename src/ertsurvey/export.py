"""Export writers for a survey line: delimited text, KML and plain line text."""
from __future__ import annotations

import enum
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .classification import DEFAULT_THRESHOLDS, Thresholds
from .models import Category, DerivedPoint, MeasurementRecord
from .resistivity import derive_points

logger = logging.getLogger(__name__)

KML_NAMESPACE = "http://www.opengis.net/kml/2.2"
LINE_HEADER = "ERT LINE"

CSV_COLUMNS = [
    "#",
    "Resistance(Ω)",
    "Resistivity(Ω·m)",
    "Depth(m)",
    "Classification",
    "Latitude",
    "Longitude",
]

# KML colours are aabbggrr
KML_COLORS: Dict[Category, str] = {
    Category.VOID: "ff0000ff",
    Category.WATER: "ffff0000",
    Category.NORMAL: "ff00ff00",
}
KML_ICONS: Dict[Category, str] = {
    Category.VOID: "http://maps.google.com/mapfiles/kml/paddle/red-circle.png",
    Category.WATER: "http://maps.google.com/mapfiles/kml/paddle/blu-circle.png",
    Category.NORMAL: "http://maps.google.com/mapfiles/kml/paddle/grn-circle.png",
}
KML_ICON_SCALE = "1.2"


class ExportPreconditionError(ValueError):
    """Raised when a line cannot be rendered in the requested format."""


class ExportKind(str, enum.Enum):
    CSV = "csv"
    KML = "kml"
    TXT = "txt"

    @property
    def prefix(self) -> str:
        return {"csv": "ert_data", "kml": "ert_survey", "txt": "ert_line"}[self.value]

    @property
    def mime_type(self) -> str:
        return {
            "csv": "text/csv",
            "kml": "application/vnd.google-earth.kml+xml",
            "txt": "text/plain",
        }[self.value]

    def filename(self, epoch_ms: int) -> str:
        return f"{self.prefix}_{epoch_ms}.{self.value}"


@dataclass(frozen=True)
class SurveyLine:
    """Immutable view of a line: spacing, records in capture order, thresholds."""

    spacing: float
    records: Sequence[MeasurementRecord] = field(default_factory=tuple)
    thresholds: Thresholds = DEFAULT_THRESHOLDS

    def points(self) -> List[DerivedPoint]:
        return derive_points(self.records, self.spacing, self.thresholds)


def points_frame(line: SurveyLine) -> pd.DataFrame:
    """Derived points as a numeric DataFrame, one row per record."""
    rows = [
        {
            "index": point.sequence_index,
            "resistance": point.resistance,
            "resistivity": point.apparent_resistivity,
            "depth": point.depth,
            "classification": point.category.value,
            "label": point.label,
            "latitude": point.latitude,
            "longitude": point.longitude,
        }
        for point in line.points()
    ]
    columns = [
        "index",
        "resistance",
        "resistivity",
        "depth",
        "classification",
        "label",
        "latitude",
        "longitude",
    ]
    return pd.DataFrame(rows, columns=columns)


def to_delimited_text(line: SurveyLine) -> str:
    rows = [
        [
            str(point.sequence_index),
            f"{point.resistance:.2f}",
            f"{point.apparent_resistivity:.2f}",
            f"{point.depth:.2f}",
            point.category.value,
            _format_coordinate(point.latitude),
            _format_coordinate(point.longitude),
        ]
        for point in line.points()
    ]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS, dtype=object)
    return df.to_csv(index=False, lineterminator="\n")


def to_geospatial_markup(line: SurveyLine, *, generated_at: Optional[datetime] = None) -> str:
    """
    Render the geotagged records of *line* as a KML 2.2 document.

    The only time-dependent element is ``Document/TimeStamp/when``; every other
    byte is a function of the line alone.
    """
    located = [point for point in line.points() if point.latitude is not None and point.longitude is not None]
    if not located:
        raise ExportPreconditionError("No geotagged measurements to export as KML")

    stamp = generated_at or datetime.now(timezone.utc)
    root = ET.Element("kml", {"xmlns": KML_NAMESPACE})
    document = ET.SubElement(root, "Document")
    ET.SubElement(document, "name").text = "ERT Survey"
    ET.SubElement(document, "description").text = (
        "Electrical Resistivity Tomography survey data\n"
        f"Spacing (a): {format_spacing(line.spacing)} m\n"
        f"Thresholds: void > {line.thresholds.void:g} Ω·m (red), "
        f"water < {line.thresholds.water:g} Ω·m (blue)"
    )
    timestamp = ET.SubElement(document, "TimeStamp")
    ET.SubElement(timestamp, "when").text = stamp.isoformat(timespec="seconds")

    for category in Category:
        style = ET.SubElement(document, "Style", {"id": category.value})
        _icon_style(style, category)

    folder = ET.SubElement(document, "Folder")
    ET.SubElement(folder, "name").text = "ERT measurements"
    for point in located:
        _placemark(folder, point)

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def to_line_text(line: SurveyLine) -> str:
    lines = [LINE_HEADER, format_spacing(line.spacing), str(len(line.records))]
    lines.extend(record.value for record in line.records)
    return "\n".join(lines) + "\n"


def write_export(
    line: SurveyLine,
    kind: ExportKind,
    output_dir: Path,
    *,
    epoch_ms: Optional[int] = None,
) -> Path:
    """Encode *line* and write it under *output_dir*; nothing is written on failure."""

    if kind is ExportKind.CSV:
        content = to_delimited_text(line)
    elif kind is ExportKind.KML:
        content = to_geospatial_markup(line)
    else:
        content = to_line_text(line)
    stamp = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / kind.filename(stamp)
    path.write_text(content, encoding="utf-8")
    logger.info("Exported %d measurements to %s (%s)", len(line.records), path, kind.mime_type)
    return path


def _icon_style(parent: ET.Element, category: Category) -> None:
    icon_style = ET.SubElement(parent, "IconStyle")
    ET.SubElement(icon_style, "color").text = KML_COLORS[category]
    ET.SubElement(icon_style, "scale").text = KML_ICON_SCALE
    icon = ET.SubElement(icon_style, "Icon")
    ET.SubElement(icon, "href").text = KML_ICONS[category]


def _placemark(parent: ET.Element, point: DerivedPoint) -> None:
    placemark = ET.SubElement(parent, "Placemark")
    ET.SubElement(placemark, "name").text = f"Point #{point.sequence_index}"
    ET.SubElement(placemark, "description").text = (
        f"Resistance: {point.resistance:.2f} Ω\n"
        f"Resistivity: {point.apparent_resistivity:.2f} Ω·m\n"
        f"Depth: {point.depth:.2f} m\n"
        f"Classification: {point.label}"
    )
    ET.SubElement(placemark, "styleUrl").text = f"#{point.category.value}"
    style = ET.SubElement(placemark, "Style")
    _icon_style(style, point.category)
    extended = ET.SubElement(placemark, "ExtendedData")
    for name, value in (
        ("index", str(point.sequence_index)),
        ("resistance", f"{point.resistance:.2f}"),
        ("resistivity", f"{point.apparent_resistivity:.2f}"),
        ("depth", f"{point.depth:.2f}"),
        ("classification", point.category.value),
    ):
        data = ET.SubElement(extended, "Data", {"name": name})
        ET.SubElement(data, "value").text = value
    geometry = ET.SubElement(placemark, "Point")
    ET.SubElement(geometry, "coordinates").text = f"{point.longitude},{point.latitude},0"


def _format_coordinate(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return f"{value:.6f}"


def format_spacing(spacing: float) -> str:
    if float(spacing).is_integer():
        return str(int(spacing))
    return repr(float(spacing))
