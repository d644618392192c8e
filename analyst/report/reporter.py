from __future__ import annotations

import json
import logging
import shutil
import time
from datetime import date, datetime, time as dtime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from analyst.config import get_settings

logger = logging.getLogger(__name__)


class Reporter:
    """Writes the artifacts of one analysis run into ``<base_dir>/<timestamp>/``."""

    def __init__(self, base_dir: str = "runs", retention: Optional[int] = None):
        self.base_dir = base_dir
        self.retention = retention if retention is not None else get_settings().runs_retention

    def _run_dir(self) -> Path:
        ts = time.strftime("%Y%m%d-%H%M%S")
        p = Path(self.base_dir) / ts
        suffix = 1
        while p.exists():
            suffix += 1
            p = Path(self.base_dir) / f"{ts}-{suffix}"
        p.mkdir(parents=True)
        return p

    def _prune_runs(self) -> None:
        base = Path(self.base_dir)
        if not base.exists():
            return
        dirs = sorted([d for d in base.iterdir() if d.is_dir()], key=lambda d: d.name, reverse=True)
        for old in dirs[self.retention:]:
            try:
                shutil.rmtree(old)
            except OSError as exc:
                logger.warning("Could not prune run directory %s: %s", old, exc)

    def save_artifacts(
        self,
        interpretation: Dict[str, Any],
        sql: Optional[str],
        chart_data: List[Dict[str, Any]],
        markdown_summary: str,
        investigation: Optional[Dict[str, Any]] = None,
        latency_sec: Optional[float] = None,
    ) -> str:
        run_dir = self._run_dir()
        (run_dir / "interpretation.json").write_text(json.dumps(self._safe_json(interpretation), indent=2))
        if sql:
            (run_dir / "query.sql").write_text(sql)
        (run_dir / "chart_data.json").write_text(json.dumps(self._safe_json(chart_data), indent=2))
        if investigation is not None:
            (run_dir / "investigation.json").write_text(json.dumps(self._safe_json(investigation), indent=2))
        if latency_sec is not None:
            markdown_summary = f"Latency: {latency_sec:.2f}s\n\n" + markdown_summary
        (run_dir / "summary.md").write_text(markdown_summary)
        self._prune_runs()
        return str(run_dir)

    def _safe_json(self, obj: Any):
        if isinstance(obj, (date, datetime, dtime)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, list):
            return [self._safe_json(x) for x in obj[:1000]]
        if isinstance(obj, dict):
            return {str(k): self._safe_json(v) for k, v in obj.items()}
        try:
            json.dumps(obj)
            return obj
        except (TypeError, ValueError):
            return str(obj)
