"""Record types shared by the acquisition and analysis layers."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class Category(str, enum.Enum):
    VOID = "void"
    WATER = "water"
    NORMAL = "normal"


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class MeasurementRecord:
    """A device reading committed to the survey line.

    ``value`` is kept exactly as the instrument sent it (comma or dot decimal
    separator); ``captured_at`` is a POSIX timestamp in seconds.
    """

    value: str
    latitude: Optional[float]
    longitude: Optional[float]
    captured_at: float

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class DerivedPoint:
    """Geophysical view of one record at its position in the line."""

    sequence_index: int
    resistance: float
    apparent_resistivity: float
    depth: float
    category: Category
    label: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
