from __future__ import annotations

import logging

from analyst.planner.intent import QueryIntent
from analyst.planner.oracle import Oracle, parse_json
from analyst.utils.schema_cache import SchemaContext

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You translate natural-language business questions into analysis plans over one table.
Only respond with a JSON object. Use only the column names listed in the schema; do NOT invent columns.

Output schema:
{
  "intent": "summary" | "trend" | "comparison" | "ranking" | "distribution",
  "metrics": ["numeric column", ...],
  "dimensions": ["group-by column", ...],
  "aggregation": "SUM" | "AVG" | "COUNT" | "MIN" | "MAX",
  "filters": [{"column": "col", "operator": "=" | "!=" | ">" | ">=" | "<" | "<=" | "LIKE" | "IN", "value": ...}],
  "time_dimension": "date column" | null,
  "limit": number | null,
  "reasoning": "one sentence"
}

Guidelines:
- "best"/"top" questions are rankings by the most revenue-like metric unless stated otherwise.
- Trends group by the time column when one exists.
- Never produce SQL; the plan is compiled by the backend.

Example: "Top 5 customers by revenue" ->
{"intent": "ranking", "metrics": ["total_spent"], "dimensions": ["customer_name"], "aggregation": "SUM",
 "filters": [], "time_dimension": null, "limit": 5, "reasoning": "Sum spend per customer and rank."}"""


class InterpretationOracle:
    """Maps (schema, question) to a QueryIntent.

    Transport failures raise ``InterpretationFailure``; content that does not
    parse into an intent degrades to the empty intent.
    """

    def __init__(self, oracle: Oracle):
        self._oracle = oracle

    async def interpret(self, schema: SchemaContext, question: str) -> QueryIntent:
        user = f"Schema: {schema.to_prompt()}\n\nQuestion: \"{question}\""
        content = await self._oracle.complete_json(SYSTEM_PROMPT, user, temperature=0.1)
        intent = QueryIntent.parse_or_default(parse_json(content, {}))
        if intent.is_empty:
            logger.warning("Interpretation produced an empty intent for question: %.100s", question)
        return intent
