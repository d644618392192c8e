from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

from analyst.errors import InterpretationFailure
from analyst.planner.intent import MAX_HYPOTHESES, HypothesisProposal, parse_proposals
from analyst.planner.oracle import Oracle, parse_json
from analyst.report.chart_data import json_safe
from analyst.utils.schema_cache import SchemaContext

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a data detective. Generate testable, specific hypotheses. Only respond with valid JSON."

PROMPT_TEMPLATE = """Investigate: "{question}"

CONTEXT:
Domain: {domain}
Available metrics: {metrics}
Available dimensions: {dimensions}
Time column: {time_column}

INITIAL OBSERVATION:
{sample}

TASK:
Generate up to {limit} distinct, falsifiable hypotheses that could explain this.
Each hypothesis must be testable with exactly one DuckDB SELECT statement.

RULES:
1. Hypotheses must be specific (not "market conditions").
2. Use {{{{readFunction}}}} as the table name, exactly as written.
3. Queries compare the current period with the previous period and return the
   current value in the first row and the previous value in the second row.
4. Use existing columns only. Never modify data.

OUTPUT FORMAT (strict JSON):
{{"hypotheses": [{{"hypothesis": "Sales dropped because order volume decreased",
  "test_query": "SELECT COUNT(*) AS orders FROM {{{{readFunction}}}} WHERE order_date >= CURRENT_DATE - INTERVAL '7 days' UNION ALL SELECT COUNT(*) FROM {{{{readFunction}}}} WHERE order_date >= CURRENT_DATE - INTERVAL '14 days' AND order_date < CURRENT_DATE - INTERVAL '7 days'"}}]}}"""


def build_prompt(schema: SchemaContext, question: str, sample_rows: Sequence[Dict[str, Any]], limit: int = MAX_HYPOTHESES) -> str:
    sample = [{k: json_safe(v) for k, v in row.items()} for row in list(sample_rows)[:10]]
    return PROMPT_TEMPLATE.format(
        question=question,
        domain=schema.domain,
        metrics=json.dumps(list(schema.metrics)),
        dimensions=json.dumps(list(schema.dimensions)),
        time_column=schema.time_column or "none",
        sample=json.dumps(sample),
        limit=limit,
    )


class HypothesisOracle:
    """Asks the oracle for candidate explanations, each paired with a test query."""

    def __init__(self, oracle: Oracle, limit: int = MAX_HYPOTHESES):
        self._oracle = oracle
        self.limit = limit

    async def propose(
        self,
        schema: SchemaContext,
        question: str,
        sample_rows: Sequence[Dict[str, Any]],
    ) -> List[HypothesisProposal]:
        prompt = build_prompt(schema, question, sample_rows, self.limit)
        content = await self._oracle.complete_json(SYSTEM_PROMPT, prompt, temperature=0.6)
        parsed = parse_json(content, None)
        if not isinstance(parsed, (dict, list)):
            raise InterpretationFailure("Hypothesis oracle returned unparsable content")
        proposals = parse_proposals(parsed, self.limit)
        logger.info("Generated %d hypotheses", len(proposals))
        return proposals
