"""Structured oracle outputs.

Oracle output is loosely typed JSON. Everything that crosses into the
pipeline goes through these models first; ``parse_or_default`` and
``parse_proposals`` never raise.
"""
from __future__ import annotations

import logging
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

IntentKind = Literal["summary", "trend", "comparison", "ranking", "distribution"]
Aggregation = Literal["SUM", "AVG", "COUNT", "MIN", "MAX"]

INTENT_ALIASES = {
    "top_n": "ranking",
    "top": "ranking",
    "trend_analysis": "trend",
    "time_series": "trend",
    "category_analysis": "comparison",
    "aggregation": "summary",
    "group_by": "summary",
}
_INTENTS = {"summary", "trend", "comparison", "ranking", "distribution"}
_AGGREGATIONS = {"SUM", "AVG", "COUNT", "MIN", "MAX"}
MAX_HYPOTHESES = 5


class QueryFilter(BaseModel):
    column: str
    operator: str = "="
    value: Union[str, int, float, bool, List[Union[str, int, float]], None] = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v: Any) -> str:
        return str(v or "=").strip().upper()


class QueryIntent(BaseModel):
    """Machine-actionable interpretation of a question."""
    intent: IntentKind = "summary"
    metrics: List[str] = Field(default_factory=list)
    dimensions: List[str] = Field(default_factory=list)
    aggregation: Aggregation = "SUM"
    filters: List[QueryFilter] = Field(default_factory=list)
    time_dimension: Optional[str] = None
    limit: Optional[int] = None
    reasoning: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_loose_output(cls, values: Any) -> Any:
        """Map nulls, aliases and scalar lists from LLM output onto the schema."""
        if not isinstance(values, dict):
            return values
        values = dict(values)
        intent = str(values.get("intent") or "summary").strip().lower()
        intent = INTENT_ALIASES.get(intent, intent)
        values["intent"] = intent if intent in _INTENTS else "summary"

        agg = str(values.get("aggregation") or "SUM").strip().upper()
        values["aggregation"] = agg if agg in _AGGREGATIONS else "SUM"

        for key in ("metrics", "dimensions"):
            raw = values.get(key)
            if raw is None:
                values[key] = []
            elif isinstance(raw, str):
                values[key] = [raw] if raw.strip() else []
            elif isinstance(raw, list):
                values[key] = [str(x) for x in raw if isinstance(x, (str, int)) and str(x).strip()]
            else:
                values[key] = []

        filters = values.get("filters")
        if not isinstance(filters, list):
            values["filters"] = []
        else:
            values["filters"] = [
                f for f in filters
                if isinstance(f, dict) and f.get("column") and not isinstance(f.get("value"), dict)
            ]

        if not isinstance(values.get("time_dimension"), str) or not values["time_dimension"].strip():
            values["time_dimension"] = None

        limit = values.get("limit")
        try:
            limit = int(limit) if limit is not None else None
        except (TypeError, ValueError):
            limit = None
        values["limit"] = limit if limit and limit > 0 else None
        return values

    @classmethod
    def empty(cls) -> "QueryIntent":
        return cls()

    @classmethod
    def parse_or_default(cls, raw: Any) -> "QueryIntent":
        if not isinstance(raw, dict) or not raw:
            return cls.empty()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding malformed interpretation: %s", exc)
            return cls.empty()

    @property
    def is_empty(self) -> bool:
        return not (self.metrics or self.dimensions or self.time_dimension or self.filters)


class HypothesisProposal(BaseModel):
    """A candidate explanation and the query that tests it, as proposed by the oracle."""
    hypothesis: str
    test_query: str

    @field_validator("hypothesis", "test_query", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return str(v or "").strip()


def parse_proposals(raw: Any, limit: int = MAX_HYPOTHESES) -> List[HypothesisProposal]:
    if isinstance(raw, dict):
        raw = raw.get("hypotheses")
    if not isinstance(raw, list):
        return []
    out: List[HypothesisProposal] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            proposal = HypothesisProposal.model_validate(item)
        except ValidationError:
            continue
        key = proposal.hypothesis.lower()
        if not proposal.hypothesis or not proposal.test_query or key in seen:
            continue
        seen.add(key)
        out.append(proposal)
        if len(out) >= limit:
            break
    return out
