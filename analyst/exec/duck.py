from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import duckdb
import pyarrow as pa

from analyst.errors import ExecutionError

logger = logging.getLogger(__name__)

READ_FUNCTION_PLACEHOLDER = "{{readFunction}}"

WRITE_VERBS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE",
    "COPY", "ATTACH", "DETACH", "INSTALL", "LOAD", "PRAGMA", "EXPORT",
    "IMPORT", "GRANT", "REVOKE", "SET", "CALL", "VACUUM", "CHECKPOINT",
)
_WRITE_VERB_RE = re.compile(r"\b(" + "|".join(WRITE_VERBS) + r")\b", re.IGNORECASE)
# Quoted literals and identifiers are blanked out before scanning for verbs.
_QUOTED_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")


def assert_read_only(sql: str) -> None:
    if not sql or not sql.strip():
        raise ExecutionError(sql or "", "Empty statement")
    body = _QUOTED_RE.sub("''", sql).strip().rstrip(";").strip()
    head = body.split(None, 1)[0].upper()
    if head not in ("SELECT", "WITH", "DESCRIBE"):
        raise ExecutionError(sql, "Only SELECT statements are allowed")
    if ";" in body:
        raise ExecutionError(sql, "Exactly one statement is allowed")
    if "--" in body or "/*" in body:
        raise ExecutionError(sql, "Comments are not allowed in statements")
    m = _WRITE_VERB_RE.search(body)
    if m:
        raise ExecutionError(sql, f"Write verb not allowed: {m.group(1).upper()}")


@dataclass
class DuckDBConfig:
    threads: Optional[int] = None


class DuckDBExecutor:
    """Runs one read-only statement per call against a single data file.

    Every call opens its own in-memory connection and closes it before
    returning, whether the statement succeeded or not.
    """

    def __init__(self, data_path: str, config: Optional[DuckDBConfig] = None):
        self.data_path = data_path
        self.config = config or DuckDBConfig()

    def read_function(self) -> str:
        path_sql = self.data_path.replace("'", "''")
        if self.data_path.lower().endswith(".parquet"):
            return f"read_parquet('{path_sql}')"
        return f"read_csv_auto('{path_sql}')"

    def render(self, sql: str) -> str:
        return sql.replace(READ_FUNCTION_PLACEHOLDER, self.read_function())

    def _connect(self):
        con = duckdb.connect(database=':memory:')
        if self.config.threads:
            con.execute(f"SET threads TO {int(self.config.threads)}")
        return con

    def query(self, sql: str, params: Optional[List[Any]] = None) -> pa.Table:
        assert_read_only(sql)
        statement = self.render(sql)
        con = self._connect()
        try:
            return con.execute(statement, params or []).fetch_arrow_table()
        except (duckdb.Error, pa.ArrowException) as exc:
            logger.error("DuckDB rejected statement: %s | %s", exc, statement)
            raise ExecutionError(statement, str(exc)) from exc
        finally:
            con.close()

    def run(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        return self.query(sql, params).to_pylist()

    def run_compiled(self, compiled) -> List[Dict[str, Any]]:
        return self.run(compiled.sql, compiled.params)
