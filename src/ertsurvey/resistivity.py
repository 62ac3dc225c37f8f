"""Wenner-array apparent resistivity and pseudo-depth computation."""
from __future__ import annotations

import math
import re
from typing import Iterable, List

from .classification import DEFAULT_THRESHOLDS, Thresholds, classify
from .models import DerivedPoint, MeasurementRecord

_LEADING_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_resistance(raw: str) -> float:
    """
    Read the leading decimal number of a device reading.

    The first ``,`` is treated as a decimal separator. Anything that does not
    start with a number yields ``0.0`` instead of raising.
    """
    text = raw.strip().replace(",", ".", 1)
    match = _LEADING_NUMBER.match(text)
    if match is None:
        return 0.0
    try:
        value = float(match.group(0))
    except (OverflowError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


class ResistivityCalculator:
    """
    Convert raw resistance readings into apparent resistivity for an equal
    electrode spacing ``a``: ``rho_a = 2 * pi * a * R``.

    Depth is the pseudo-depth ``a * 0.5 * index`` used for field display. It
    is a rough position along the sounding, not the output of an inversion.
    """

    def __init__(self, thresholds: Thresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def compute(self, raw_reading: str, sequence_index: int, spacing: float) -> DerivedPoint:
        resistance = parse_resistance(raw_reading)
        resistivity = 2.0 * math.pi * spacing * resistance
        depth = spacing * 0.5 * sequence_index
        category, label = classify(resistivity, self.thresholds)
        return DerivedPoint(
            sequence_index=sequence_index,
            resistance=resistance,
            apparent_resistivity=round(resistivity, 2),
            depth=round(depth, 2),
            category=category,
            label=label,
        )

    def derive(self, record: MeasurementRecord, sequence_index: int, spacing: float) -> DerivedPoint:
        point = self.compute(record.value, sequence_index, spacing)
        return DerivedPoint(
            sequence_index=point.sequence_index,
            resistance=point.resistance,
            apparent_resistivity=point.apparent_resistivity,
            depth=point.depth,
            category=point.category,
            label=point.label,
            latitude=record.latitude,
            longitude=record.longitude,
        )


def compute(
    raw_reading: str,
    sequence_index: int,
    spacing: float,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> DerivedPoint:
    return ResistivityCalculator(thresholds).compute(raw_reading, sequence_index, spacing)


def derive_points(
    records: Iterable[MeasurementRecord],
    spacing: float,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> List[DerivedPoint]:
    """Derive every record in capture order; indices start at 1."""
    calculator = ResistivityCalculator(thresholds)
    return [
        calculator.derive(record, index, spacing)
        for index, record in enumerate(records, start=1)
    ]
