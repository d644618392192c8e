from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from analyst.exec.duck import DuckDBExecutor

_NUMERIC_TYPES = ("TINYINT", "SMALLINT", "INTEGER", "BIGINT", "HUGEINT", "UTINYINT", "USMALLINT",
                  "UINTEGER", "UBIGINT", "FLOAT", "DOUBLE", "REAL", "DECIMAL")
_TEMPORAL_TYPES = ("DATE", "TIMESTAMP", "TIME")


@dataclass(frozen=True)
class SchemaContext:
    metrics: Tuple[str, ...] = ()
    dimensions: Tuple[str, ...] = ()
    time_column: Optional[str] = None
    domain: str = "general"

    @classmethod
    def from_dict(cls, data: Mapping) -> "SchemaContext":
        return cls(
            metrics=tuple(data.get("metrics") or ()),
            dimensions=tuple(data.get("dimensions") or ()),
            time_column=data.get("timeColumn") or data.get("time_column"),
            domain=data.get("domain") or "general",
        )

    @property
    def columns(self) -> set[str]:
        cols = set(self.metrics) | set(self.dimensions)
        if self.time_column:
            cols.add(self.time_column)
        return cols

    def has_column(self, name: Optional[str]) -> bool:
        return bool(name) and name in self.columns

    def to_prompt(self) -> str:
        return json.dumps({
            "domain": self.domain,
            "metrics": list(self.metrics),
            "dimensions": list(self.dimensions),
            "time_column": self.time_column,
        })


class SchemaProvider(Protocol):
    def get(self, dataset_id: str) -> SchemaContext: ...


class StaticSchemaProvider:
    def __init__(self, contexts: Mapping[str, SchemaContext]):
        self._contexts = dict(contexts)

    def get(self, dataset_id: str) -> SchemaContext:
        try:
            return self._contexts[dataset_id]
        except KeyError:
            raise KeyError(f"Unknown dataset: {dataset_id}") from None


def classify_columns(described: List[Tuple[str, str]], domain: str = "general") -> SchemaContext:
    """Split (name, duckdb type) pairs into metrics, dimensions and a time column."""
    metrics: List[str] = []
    dimensions: List[str] = []
    time_column: Optional[str] = None
    for name, col_type in described:
        upper = (col_type or "").upper()
        if any(upper.startswith(t) for t in _NUMERIC_TYPES):
            metrics.append(name)
        elif any(upper.startswith(t) for t in _TEMPORAL_TYPES):
            if time_column is None:
                time_column = name
            dimensions.append(name)
        else:
            dimensions.append(name)
    return SchemaContext(metrics=tuple(metrics), dimensions=tuple(dimensions), time_column=time_column, domain=domain)


@dataclass
class SchemaCache:
    """Local schema provider: profiles a data file through DuckDB's DESCRIBE."""
    paths: Dict[str, str] = field(default_factory=dict)
    domain: str = "general"
    _cache: Dict[str, SchemaContext] = field(default_factory=dict)

    def register(self, dataset_id: str, data_path: str) -> None:
        self.paths[dataset_id] = data_path
        self._cache.pop(dataset_id, None)

    def get_or_load(self, executor: DuckDBExecutor, dataset_id: Optional[str] = None) -> SchemaContext:
        key = dataset_id or executor.data_path
        if key in self._cache:
            return self._cache[key]
        df = executor.query("DESCRIBE SELECT * FROM {{readFunction}}").to_pandas()
        described = [(row["column_name"], row["column_type"]) for _, row in df.iterrows()]
        snapshot = classify_columns(described, domain=self.domain)
        self._cache[key] = snapshot
        return snapshot

    def get(self, dataset_id: str) -> SchemaContext:
        if dataset_id in self._cache:
            return self._cache[dataset_id]
        if dataset_id not in self.paths:
            raise KeyError(f"Unknown dataset: {dataset_id}")
        return self.get_or_load(DuckDBExecutor(self.paths[dataset_id]), dataset_id)
