"""Summary statistics for a survey line."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

from .export import SurveyLine, points_frame
from .models import Category


@dataclass(frozen=True)
class LineSummary:
    count: int
    geotagged: int
    categories: Dict[Category, int]
    resistivity_min: float
    resistivity_max: float
    resistivity_mean: float
    max_depth: float


def summarize_line(line: SurveyLine) -> LineSummary:
    df = points_frame(line)
    categories = {category: int((df["classification"] == category.value).sum()) for category in Category}
    if df.empty:
        return LineSummary(
            count=0,
            geotagged=0,
            categories=categories,
            resistivity_min=float("nan"),
            resistivity_max=float("nan"),
            resistivity_mean=float("nan"),
            max_depth=0.0,
        )
    resistivity = df["resistivity"].to_numpy(dtype=float)
    located = df["latitude"].notna() & df["longitude"].notna()
    return LineSummary(
        count=len(df),
        geotagged=int(located.sum()),
        categories=categories,
        resistivity_min=float(np.min(resistivity)),
        resistivity_max=float(np.max(resistivity)),
        resistivity_mean=float(np.mean(resistivity)),
        max_depth=float(df["depth"].max()),
    )
