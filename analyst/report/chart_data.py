"""Chart data normalization.

Turns whatever rows the engine returned into the canonical chart contract:
every point has a string ``name`` and a finite numeric ``value``. Row shapes
are resolved by an ordered list of strategies; the first one that applies
wins. Nothing in here raises on bad data.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from numbers import Number
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

ChartDataPoint = Dict[str, Any]

_CURRENCY_CHARS_RE = re.compile(r"[$€£₹,\s]")
_CURRENCY_LIKE_RE = re.compile(r"^\s*[-+]?\s*[$€£₹]?\s*[-+]?[\d,]*\.?\d+\s*$")


def to_number(raw: Any) -> float:
    """Coerce a raw cell into a finite float; anything unusable becomes 0."""
    if raw is None or isinstance(raw, bool):
        return float(raw) if isinstance(raw, bool) else 0.0
    if isinstance(raw, (Number, Decimal)):
        try:
            value = float(raw)
        except (TypeError, ValueError, OverflowError):
            return 0.0
        return value if math.isfinite(value) else 0.0
    if isinstance(raw, str):
        cleaned = _CURRENCY_CHARS_RE.sub("", raw)
        if not cleaned:
            return 0.0
        try:
            value = float(cleaned)
        except ValueError:
            return 0.0
        return value if math.isfinite(value) else 0.0
    return 0.0


def looks_like_metric(raw: Any) -> bool:
    """Numeric cells and currency-formatted strings count as metric candidates."""
    if isinstance(raw, bool) or raw is None:
        return False
    if isinstance(raw, (Number, Decimal)):
        return True
    return isinstance(raw, str) and bool(_CURRENCY_LIKE_RE.match(raw))


def json_safe(raw: Any) -> Any:
    if raw is None or isinstance(raw, (bool, str)):
        return raw
    if isinstance(raw, (Number, Decimal)):
        if isinstance(raw, int):
            return raw
        value = to_number(raw)
        return int(value) if isinstance(raw, Decimal) and value == int(value) else value
    if isinstance(raw, (date, datetime, time)):
        return raw.isoformat()
    return str(raw)


def _name_for(row: Dict[str, Any], idx: int, dimension: Optional[str]) -> str:
    if dimension and row.get(dimension) is not None:
        return str(json_safe(row[dimension]))
    if row.get("name") is not None:
        return str(json_safe(row["name"]))
    if row:
        first = next(iter(row.values()))
        if first is not None:
            return str(json_safe(first))
    return f"Item {idx + 1}"


def _value_for(row: Dict[str, Any], metric: Optional[str]) -> float:
    if metric and metric in row:
        return to_number(row[metric])
    if "value" in row:
        return to_number(row["value"])
    for raw in row.values():
        if looks_like_metric(raw):
            return to_number(raw)
    return 0.0


@dataclass(frozen=True)
class NormalizeContext:
    rows: Sequence[Dict[str, Any]]
    metrics: List[str]
    dimension: Optional[str]


def is_finite_number(value: Any) -> bool:
    """True for int and float values that fit a finite float; bools are excluded."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _is_canonical(ctx: NormalizeContext) -> bool:
    return all(isinstance(r.get("name"), str) and is_finite_number(r.get("value")) for r in ctx.rows)


def _has_name_value(ctx: NormalizeContext) -> bool:
    return all("name" in r and "value" in r for r in ctx.rows)


def _coerce_name_value(ctx: NormalizeContext) -> List[ChartDataPoint]:
    return _single_metric(NormalizeContext(ctx.rows, [], None), "value")


def _canonical(ctx: NormalizeContext) -> List[ChartDataPoint]:
    return list(ctx.rows)


def _multi_metric(ctx: NormalizeContext) -> List[ChartDataPoint]:
    out: List[ChartDataPoint] = []
    for idx, row in enumerate(ctx.rows):
        point: ChartDataPoint = {"name": _name_for(row, idx, ctx.dimension)}
        for metric in ctx.metrics:
            point[metric] = to_number(row.get(metric))
        point["value"] = point[ctx.metrics[0]]
        out.append(point)
    return out


def _single_metric(ctx: NormalizeContext, metric: Optional[str] = None) -> List[ChartDataPoint]:
    metric = metric or (ctx.metrics[0] if ctx.metrics else None)
    out: List[ChartDataPoint] = []
    for idx, row in enumerate(ctx.rows):
        point: ChartDataPoint = {k: json_safe(v) for k, v in row.items() if k not in ("name", "value")}
        point["name"] = _name_for(row, idx, ctx.dimension)
        point["value"] = _value_for(row, metric)
        out.append(point)
    return out


def _implied_metric(ctx: NormalizeContext) -> List[ChartDataPoint]:
    first = ctx.rows[0]
    candidates = [k for k, v in first.items() if k != ctx.dimension and looks_like_metric(v)]
    metric = candidates[0] if candidates else None
    logger.info("No metric declared; implied metric column: %s", metric)
    dimension = ctx.dimension
    if dimension is None and "name" not in first:
        names = [k for k in first if k != metric]
        dimension = names[0] if names else None
    return _single_metric(NormalizeContext(ctx.rows, [], dimension), metric)


Strategy = Callable[[NormalizeContext], List[ChartDataPoint]]

# Ordered: the first strategy whose predicate matches handles the rows.
STRATEGIES: List[tuple[str, Callable[[NormalizeContext], bool], Strategy]] = [
    ("canonical", _is_canonical, _canonical),
    ("name_value", _has_name_value, _coerce_name_value),
    ("multi_metric", lambda ctx: len(ctx.metrics) > 1, _multi_metric),
    ("single_metric", lambda ctx: len(ctx.metrics) == 1, _single_metric),
    ("implied_metric", lambda ctx: True, _implied_metric),
]


def normalize_chart_data(
    rows: Optional[Sequence[Any]],
    metrics: Optional[Sequence[str]] = None,
    dimensions: Optional[Sequence[str]] = None,
) -> List[ChartDataPoint]:
    if not rows:
        return []
    dict_rows = [r for r in rows if isinstance(r, dict)]
    if not dict_rows:
        return []
    ctx = NormalizeContext(
        rows=dict_rows,
        metrics=[m for m in (metrics or []) if m],
        dimension=(dimensions or [None])[0],
    )
    for name, applies, strategy in STRATEGIES:
        if applies(ctx):
            logger.debug("Normalizing %d rows with %s strategy", len(dict_rows), name)
            return strategy(ctx)
    return []


def normalize_for_intent(rows: Optional[Sequence[Any]], intent) -> List[ChartDataPoint]:
    """Normalize using the metrics and grouping column declared by a QueryIntent."""
    dimensions = list(intent.dimensions)
    if intent.intent == "trend" and intent.time_dimension:
        dimensions = [intent.time_dimension] + dimensions
    return normalize_chart_data(rows, intent.metrics, dimensions)


def validate_chart_data(data: Any) -> bool:
    if not isinstance(data, list) or not data:
        logger.warning("Chart data is empty or not a list")
        return False
    for point in data:
        if not isinstance(point, dict) or not isinstance(point.get("name"), str):
            logger.warning("Chart point missing string name: %r", point)
            return False
        value = point.get("value")
        if not is_finite_number(value):
            logger.warning("Chart point missing finite value: %r", point)
            return False
    return True
