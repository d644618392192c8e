from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from analyst.exec.duck import READ_FUNCTION_PLACEHOLDER
from analyst.planner.intent import QueryFilter, QueryIntent
from analyst.utils.schema_cache import SchemaContext

logger = logging.getLogger(__name__)

ALLOWED_OPERATORS = {"=", "!=", "<>", ">", ">=", "<", "<=", "LIKE", "ILIKE", "IN"}
GROUPED_INTENTS = {"summary", "comparison", "ranking", "distribution"}
DEFAULT_LIMIT = 1000
DEFAULT_RANKING_LIMIT = 10
# Currency symbols, thousands separators and spaces stripped before casting.
_CURRENCY_PATTERN = "[₹$€£, ]"


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: List[Any] = field(default_factory=list)


def escape_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def numeric_expr(column: str) -> str:
    return (
        f"TRY_CAST(REGEXP_REPLACE(CAST({escape_ident(column)} AS VARCHAR), "
        f"'{_CURRENCY_PATTERN}', '', 'g') AS DOUBLE)"
    )


def sanitize_intent(intent: QueryIntent, schema: SchemaContext) -> QueryIntent:
    """Drop every reference the schema does not know and fill in safe defaults.

    Never raises: a partially wrong interpretation still yields a runnable plan.
    """
    known = schema.columns
    dropped: List[str] = []

    metrics = [m for m in intent.metrics if m in known]
    dropped += [m for m in intent.metrics if m not in known]
    dimensions = [d for d in intent.dimensions if d in known and d not in metrics]
    dropped += [d for d in intent.dimensions if d not in known]
    time_dimension = intent.time_dimension if intent.time_dimension in known else None
    if intent.time_dimension and time_dimension is None:
        dropped.append(intent.time_dimension)

    filters: List[QueryFilter] = []
    for f in intent.filters:
        if f.column not in known:
            dropped.append(f.column)
        elif f.operator not in ALLOWED_OPERATORS:
            logger.warning("Dropping filter on %s with unsupported operator %r", f.column, f.operator)
        else:
            filters.append(f)

    if dropped:
        logger.warning("Dropped unknown columns from interpretation: %s", sorted(set(dropped)))

    if not metrics and schema.metrics and not intent.is_empty:
        metrics = [schema.metrics[0]]
        dimensions = [d for d in dimensions if d != metrics[0]]

    if intent.intent == "trend":
        if time_dimension is None:
            time_dimension = schema.time_column or (dimensions[0] if dimensions else None)
        if time_dimension in metrics:
            time_dimension = None
    elif intent.intent in GROUPED_INTENTS and not dimensions and not intent.is_empty:
        candidates = [d for d in schema.dimensions if d != schema.time_column and d not in metrics]
        candidates = candidates or [d for d in schema.dimensions if d not in metrics]
        if candidates:
            dimensions = [candidates[0]]

    return intent.model_copy(update={
        "metrics": metrics,
        "dimensions": dimensions,
        "time_dimension": time_dimension,
        "filters": filters,
    })


def _compile_filter(f: QueryFilter, schema: SchemaContext) -> Tuple[Optional[str], List[Any]]:
    col_sql = escape_ident(f.column)
    op = "!=" if f.operator == "<>" else f.operator
    if f.value is None:
        if op == "=":
            return f"{col_sql} IS NULL", []
        if op == "!=":
            return f"{col_sql} IS NOT NULL", []
        return None, []
    if op == "IN":
        values = f.value if isinstance(f.value, list) else [f.value]
        if not values:
            return None, []
        placeholders = ", ".join(["?"] * len(values))
        return f"{col_sql} IN ({placeholders})", list(values)
    if isinstance(f.value, list):
        return None, []
    if op in ("LIKE", "ILIKE"):
        return f"CAST({col_sql} AS VARCHAR) {op} ?", [str(f.value)]
    if f.column in schema.metrics and isinstance(f.value, (int, float)) and not isinstance(f.value, bool):
        return f"{numeric_expr(f.column)} {op} ?", [f.value]
    return f"{col_sql} {op} ?", [f.value]


def _metric_expr(metric: str, aggregation: str) -> str:
    if aggregation == "COUNT":
        return f"COUNT({escape_ident(metric)})"
    return f"{aggregation}({numeric_expr(metric)})"


def build_sql(intent: QueryIntent, schema: SchemaContext) -> CompiledQuery:
    """Compile a sanitized intent into one read-only statement over ``{{readFunction}}``."""
    known = schema.columns
    for col in intent.metrics + intent.dimensions + [f.column for f in intent.filters]:
        if col not in known:
            raise ValueError(f"Unknown column: {col}")
    if intent.time_dimension and intent.time_dimension not in known:
        raise ValueError(f"Unknown column: {intent.time_dimension}")

    params: List[Any] = []
    where_clauses: List[str] = []
    for f in intent.filters:
        clause, p = _compile_filter(f, schema)
        if clause:
            where_clauses.append(clause)
            params.extend(p)
    where_sql = (" WHERE " + " AND ".join(where_clauses)) if where_clauses else ""

    if intent.intent == "trend" and intent.time_dimension:
        group_col: Optional[str] = intent.time_dimension
    else:
        group_col = intent.dimensions[0] if intent.dimensions else None

    metric_parts = [f"{_metric_expr(m, intent.aggregation)} AS {escape_ident(m)}" for m in intent.metrics]
    source = f"FROM {READ_FUNCTION_PLACEHOLDER}"

    if group_col is None and not metric_parts:
        sql = f"SELECT * {source}{where_sql} LIMIT ?"
        params.append(intent.limit or DEFAULT_RANKING_LIMIT)
        return CompiledQuery(sql=sql, params=params)

    if group_col is None:
        sql = f"SELECT 'Total' AS name, {', '.join(metric_parts)} {source}{where_sql}"
        return CompiledQuery(sql=sql, params=params)

    if not metric_parts:
        metric_parts = ['COUNT(*) AS "count"']

    group_sql = escape_ident(group_col)
    sql = f"SELECT {group_sql}, {', '.join(metric_parts)} {source}{where_sql} GROUP BY {group_sql}"
    if intent.intent == "trend":
        sql += f" ORDER BY {group_sql} ASC"
        limit = intent.limit or DEFAULT_LIMIT
    else:
        sql += " ORDER BY 2 DESC NULLS LAST"
        default = DEFAULT_RANKING_LIMIT if intent.intent == "ranking" else DEFAULT_LIMIT
        limit = intent.limit or default
    sql += " LIMIT ?"
    params.append(max(1, min(limit, DEFAULT_LIMIT)))
    return CompiledQuery(sql=sql, params=params)


def compile_intent(intent: QueryIntent, schema: SchemaContext) -> Tuple[QueryIntent, CompiledQuery]:
    sanitized = sanitize_intent(intent, schema)
    return sanitized, build_sql(sanitized, schema)
