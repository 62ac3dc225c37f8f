"""Soil/anomaly classification of apparent resistivity values."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .models import Category

VOID_THRESHOLD = 800.0
WATER_THRESHOLD = 50.0

LABELS: Dict[Category, str] = {
    Category.VOID: "potential void/cavity",
    Category.WATER: "high moisture/water",
    Category.NORMAL: "normal soil",
}


@dataclass(frozen=True)
class Thresholds:
    """Resistivity bounds in ohm-metres. Both comparisons are strict."""

    void: float = VOID_THRESHOLD
    water: float = WATER_THRESHOLD

    def __post_init__(self) -> None:
        if self.water >= self.void:
            raise ValueError(
                f"water threshold ({self.water}) must be below void threshold ({self.void})"
            )


DEFAULT_THRESHOLDS = Thresholds()


def classify(
    apparent_resistivity: float, thresholds: Thresholds = DEFAULT_THRESHOLDS
) -> Tuple[Category, str]:
    """Return ``(category, label)`` for *apparent_resistivity*.

    Negative values fall below the water threshold and are reported as
    ``water``; the comparison is applied literally.
    """

    if apparent_resistivity > thresholds.void:
        category = Category.VOID
    elif apparent_resistivity < thresholds.water:
        category = Category.WATER
    else:
        category = Category.NORMAL
    return category, LABELS[category]
