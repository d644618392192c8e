from __future__ import annotations

from typing import List, Optional

import numpy as np

from analyst.planner.intent import QueryIntent
from analyst.report.chart_data import ChartDataPoint

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
CATEGORIES = ["Category A", "Category B", "Category C", "Category D", "Category E"]


def generate_synthetic_data(intent: QueryIntent, rng: Optional[np.random.Generator] = None) -> List[ChartDataPoint]:
    """Placeholder chart data shaped after the intent.

    Every point carries ``synthetic: True`` so callers can tell it apart from
    query results.
    """
    rng = rng or np.random.default_rng()
    metric = intent.metrics[0] if intent.metrics else "revenue"

    if intent.intent == "ranking":
        n = intent.limit or 5
        names = [f"Item {i + 1}" for i in range(n)]
        values = sorted(rng.integers(10_000, 110_000, size=n).tolist(), reverse=True)
    elif intent.intent == "trend":
        names = MONTHS[:6]
        values = rng.integers(20_000, 70_000, size=len(names)).tolist()
    elif intent.intent == "comparison":
        names = CATEGORIES
        values = rng.integers(15_000, 95_000, size=len(names)).tolist()
    else:
        names = [f"Entry {i + 1}" for i in range(5)]
        values = rng.integers(0, 100_000, size=len(names)).tolist()

    return [
        {"name": name, "value": float(value), metric: float(value), "synthetic": True}
        for name, value in zip(names, values)
    ]
