"""Question answering pipeline.

``run_analysis`` is the single entry point for chart questions: rate limit,
cache, interpretation, plan compilation, execution, normalization. Every
failure below the rate limiter degrades to clearly flagged synthetic data so
callers always get a chart; an empty or unparsable interpretation counts as a
failure. Degraded answers are never cached. ``investigate`` runs the
root-cause engine for causal questions and caches its result.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from analyst.config import Settings, get_settings
from analyst.errors import ExecutionError, InterpretationFailure, ValidationFailure
from analyst.exec.duck import DuckDBExecutor
from analyst.exec.sql_builder import CompiledQuery, compile_intent
from analyst.planner.hypothesis_planner import HypothesisOracle
from analyst.planner.intent import QueryIntent
from analyst.planner.openai_planner import InterpretationOracle
from analyst.planner.oracle import OpenAIJsonOracle
from analyst.report.chart_data import ChartDataPoint, normalize_for_intent, validate_chart_data
from analyst.report.synthetic import generate_synthetic_data
from analyst.tools.investigation import InvestigationResult, Investigator
from analyst.utils.answers import summarize_investigation
from analyst.utils.query_cache import QueryCache
from analyst.utils.rate_limiter import RateLimiter
from analyst.utils.schema_cache import SchemaCache, SchemaProvider

logger = logging.getLogger(__name__)

INTERPRETATION_FAILED = "interpretation_failed"
EXECUTION_FAILED = "execution_failed"
VALIDATION_FAILED = "validation_failed"
NO_MATCH = "no_match"

INVESTIGATION_KEY_PREFIX = "why:"

_CAUSAL_RE = re.compile(r"\b(why|cause|reason)", re.IGNORECASE)

ExecutorFactory = Callable[[str], DuckDBExecutor]


def is_causal_question(question: str) -> bool:
    return bool(_CAUSAL_RE.search(question or ""))


def _copy_points(data: List[ChartDataPoint]) -> List[ChartDataPoint]:
    return [dict(p) for p in data]


@dataclass
class AnalysisResponse:
    interpretation: QueryIntent
    data: List[ChartDataPoint]
    cached: bool = False
    sql: Optional[str] = None
    fallback: Optional[str] = None

    @property
    def synthetic(self) -> bool:
        return self.fallback is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interpretation": self.interpretation.model_dump(),
            "data": self.data,
            "cached": self.cached,
            "sql": self.sql,
            "fallback": self.fallback,
            "synthetic": self.synthetic,
        }


@dataclass
class AskResult:
    response: AnalysisResponse
    investigation: Optional[InvestigationResult] = None
    summary: Dict[str, str] = field(default_factory=dict)


class AnalysisPipeline:
    def __init__(
        self,
        schema_provider: SchemaProvider,
        executor_factory: ExecutorFactory,
        interpreter: InterpretationOracle,
        hypothesis_oracle: HypothesisOracle,
        cache: QueryCache,
        rate_limiter: RateLimiter,
        settings: Optional[Settings] = None,
    ):
        self.schema_provider = schema_provider
        self.executor_factory = executor_factory
        self.interpreter = interpreter
        self.hypothesis_oracle = hypothesis_oracle
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.settings = settings or get_settings()

    async def _execute(self, executor: DuckDBExecutor, compiled: CompiledQuery) -> List[Dict[str, Any]]:
        call = asyncio.to_thread(executor.run_compiled, compiled)
        timeout = self.settings.query_timeout_sec
        if timeout and timeout > 0:
            try:
                return await asyncio.wait_for(call, timeout=timeout)
            except asyncio.TimeoutError:
                raise ExecutionError(compiled.sql, f"query exceeded {timeout:g}s") from None
        return await call

    def _degraded(self, intent: QueryIntent, sql: Optional[str], reason: str) -> AnalysisResponse:
        logger.warning("Serving synthetic data (%s) for intent %s", reason, intent.intent)
        return AnalysisResponse(
            interpretation=intent,
            data=generate_synthetic_data(intent),
            sql=sql,
            fallback=reason,
        )

    @staticmethod
    def _check_chart_data(data: List[ChartDataPoint]) -> None:
        if not validate_chart_data(data):
            raise ValidationFailure(f"{len(data)} chart points failed validation")

    async def run_analysis(self, dataset_id: str, user_id: str, question: str) -> AnalysisResponse:
        self.rate_limiter.enforce(user_id)

        key = self.cache.generate_key(dataset_id, question)
        hit = self.cache.get(key)
        if hit is not None:
            logger.info("Cache HIT: %s", key)
            return replace(hit, cached=True, data=_copy_points(hit.data))
        logger.info("Cache MISS: %s", key)

        schema = self.schema_provider.get(dataset_id)
        try:
            intent = await self.interpreter.interpret(schema, question)
        except InterpretationFailure as exc:
            logger.warning("Interpretation failed: %s", exc)
            return self._degraded(QueryIntent.empty(), None, INTERPRETATION_FAILED)
        if intent.is_empty:
            return self._degraded(intent, None, INTERPRETATION_FAILED)

        sanitized, compiled = compile_intent(intent, schema)
        try:
            rows = await self._execute(self.executor_factory(dataset_id), compiled)
        except ExecutionError as exc:
            logger.error("Execution failed for statement %s: %s", exc.statement, exc.message)
            return self._degraded(sanitized, compiled.sql, EXECUTION_FAILED)

        data = normalize_for_intent(rows, sanitized)
        if not data:
            return self._degraded(sanitized, compiled.sql, NO_MATCH)
        try:
            self._check_chart_data(data)
        except ValidationFailure as exc:
            logger.error("Chart data rejected: %s", exc)
            return self._degraded(sanitized, compiled.sql, VALIDATION_FAILED)

        response = AnalysisResponse(interpretation=sanitized, data=data, sql=compiled.sql)
        self.cache.set(key, replace(response, data=_copy_points(data)))
        return response

    async def investigate(
        self,
        dataset_id: str,
        question: str,
        initial_data: Sequence[Dict[str, Any]],
        interpretation: Optional[QueryIntent] = None,
        user_id: Optional[str] = None,
    ) -> InvestigationResult:
        if user_id is not None:
            self.rate_limiter.enforce(user_id)

        key = self.cache.generate_key(dataset_id, INVESTIGATION_KEY_PREFIX + question)
        hit = self.cache.get(key)
        if hit is not None:
            logger.info("Cache HIT: %s", key)
            return hit

        schema = self.schema_provider.get(dataset_id)
        if interpretation is not None and interpretation.reasoning:
            logger.info("Investigating with interpretation: %s", interpretation.reasoning)
        investigator = Investigator(
            self.hypothesis_oracle,
            self.executor_factory(dataset_id),
            max_attempts=self.settings.hypothesis_max_attempts,
            backoff_base=self.settings.hypothesis_backoff_base_sec,
            backoff_cap=self.settings.hypothesis_backoff_cap_sec,
            max_concurrency=self.settings.hypothesis_max_concurrency,
        )
        result = await investigator.investigate(schema, question, initial_data)
        self.cache.set(key, result)
        return result

    async def explain(
        self, dataset_id: str, user_id: str, question: str, response: AnalysisResponse
    ) -> InvestigationResult:
        """Root-cause investigation seeded with the rows of an earlier answer.

        Placeholder data says nothing about the dataset, so synthetic answers get
        the empty result without consulting the oracle.
        """
        if response.synthetic:
            logger.info("Skipping investigation: answer is synthetic (%s)", response.fallback)
            return InvestigationResult.empty()
        return await self.investigate(dataset_id, question, response.data, response.interpretation, user_id=user_id)

    async def ask(self, dataset_id: str, user_id: str, question: str) -> AskResult:
        response = await self.run_analysis(dataset_id, user_id, question)
        if not is_causal_question(question):
            return AskResult(response=response)
        result = await self.explain(dataset_id, user_id, question, response)
        return AskResult(response=response, investigation=result, summary=summarize_investigation(result))


def build_pipeline(
    schema_cache: SchemaCache,
    cache: QueryCache,
    rate_limiter: RateLimiter,
    settings: Optional[Settings] = None,
) -> AnalysisPipeline:
    """Pipeline backed by local data files and the OpenAI oracles."""
    settings = settings or get_settings()

    def executor_factory(dataset_id: str) -> DuckDBExecutor:
        try:
            return DuckDBExecutor(schema_cache.paths[dataset_id])
        except KeyError:
            raise KeyError(f"Unknown dataset: {dataset_id}") from None

    return AnalysisPipeline(
        schema_provider=schema_cache,
        executor_factory=executor_factory,
        interpreter=InterpretationOracle(OpenAIJsonOracle(settings.model_name, settings)),
        hypothesis_oracle=HypothesisOracle(OpenAIJsonOracle(settings.fast_model_name, settings)),
        cache=cache,
        rate_limiter=rate_limiter,
        settings=settings,
    )
