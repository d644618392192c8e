"""Root-cause investigation for "why" questions.

An investigation moves through GENERATING -> TESTING -> RANKED: the hypothesis
oracle proposes explanations with test queries, each query runs against the
dataset, the returned evidence is scored, and the scored hypotheses are ranked
into a primary cause, contributing causes and unproven ones.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from numbers import Number
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from analyst.errors import ExecutionError, OracleExhausted
from analyst.exec.duck import DuckDBExecutor
from analyst.planner.hypothesis_planner import HypothesisOracle
from analyst.planner.intent import HypothesisProposal
from analyst.report.chart_data import json_safe
from analyst.utils.schema_cache import SchemaContext

logger = logging.getLogger(__name__)

PRIMARY_MIN_STRENGTH = 50
PRIMARY_MIN_CONFIDENCE = 50
SECONDARY_MIN_STRENGTH = 30
SECONDARY_MIN_CONFIDENCE = 40
MAX_SECONDARY = 2
MAX_EVIDENCE_ROWS = 10
SAMPLE_ROWS = 10

# (exclusive lower bound on |percent change|, strength)
STRENGTH_TIERS = ((50, 90), (30, 75), (20, 60), (10, 45), (5, 30))


class InvestigationState(str, Enum):
    GENERATING = "GENERATING"
    TESTING = "TESTING"
    RANKED = "RANKED"


@dataclass(frozen=True)
class Hypothesis:
    id: str
    hypothesis: str
    test_query: str
    evidence: Optional[List[Dict[str, Any]]]
    strength: int
    confidence: int
    conclusion: str

    @property
    def combined_score(self) -> float:
        return self.strength * self.confidence / 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InvestigationResult:
    primary_cause: Optional[Hypothesis]
    secondary_causes: List[Hypothesis]
    unproven_hypotheses: List[Hypothesis]
    overall_confidence: int

    @classmethod
    def empty(cls) -> "InvestigationResult":
        return cls(None, [], [], 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_cause": self.primary_cause.to_dict() if self.primary_cause else None,
            "secondary_causes": [h.to_dict() for h in self.secondary_causes],
            "unproven_hypotheses": [h.to_dict() for h in self.unproven_hypotheses],
            "overall_confidence": self.overall_confidence,
        }


@dataclass(frozen=True)
class EvidenceScore:
    strength: int
    confidence: int
    conclusion: str


def extract_numeric_value(row: Optional[Dict[str, Any]]) -> Optional[float]:
    """First field of the row that is a number or a numeric string."""
    if not row:
        return None
    for value in row.values():
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (Number, Decimal)):
            try:
                number = float(value)
            except (TypeError, ValueError, OverflowError):
                continue
            if math.isfinite(number):
                return number
            continue
        if isinstance(value, str):
            try:
                number = float(value.strip().replace(",", "").lstrip("$€£₹"))
            except ValueError:
                continue
            if math.isfinite(number):
                return number
    return None


def strength_for_change(abs_change: float) -> int:
    for bound, strength in STRENGTH_TIERS:
        if abs_change > bound:
            return strength
    return 15


def _fmt(value: float) -> str:
    return f"{int(value)}" if float(value).is_integer() else f"{value:g}"


def evaluate_evidence(evidence: Optional[Sequence[Dict[str, Any]]]) -> EvidenceScore:
    if not evidence:
        return EvidenceScore(0, 0, "No data to support this hypothesis; evidence is too weak.")

    if len(evidence) >= 2:
        current = extract_numeric_value(evidence[0])
        previous = extract_numeric_value(evidence[1])
        if current is not None and previous is not None and previous != 0:
            percent_change = (current - previous) / previous * 100
            abs_change = abs(percent_change)
            strength = strength_for_change(abs_change)
            confidence = 50
            if current > 100 and previous > 100:
                confidence += 30
            elif current > 50 and previous > 50:
                confidence += 20
            elif current > 10 and previous > 10:
                confidence += 10
            direction = "decreased" if current < previous else "increased"
            conclusion = (
                f"Strong evidence: {direction} by {abs_change:.1f}% "
                f"({_fmt(previous)} → {_fmt(current)})"
            )
            return EvidenceScore(strength, min(confidence, 95), conclusion)

    value = extract_numeric_value(evidence[0])
    if value is not None:
        return EvidenceScore(
            40, 50,
            f"Found evidence: value = {_fmt(value)}. Single data point with no comparison baseline.",
        )

    return EvidenceScore(
        25, 40,
        f"Weak evidence: found {len(evidence)} data points but no clear change pattern; evidence is too weak.",
    )


def rank_hypotheses(hypotheses: Sequence[Hypothesis]) -> InvestigationResult:
    ranked = sorted(hypotheses, key=lambda h: h.combined_score, reverse=True)
    primary = next(
        (h for h in ranked if h.strength >= PRIMARY_MIN_STRENGTH and h.confidence >= PRIMARY_MIN_CONFIDENCE),
        None,
    )
    secondary = [
        h for h in ranked
        if h is not primary and h.strength >= SECONDARY_MIN_STRENGTH and h.confidence >= SECONDARY_MIN_CONFIDENCE
    ][:MAX_SECONDARY]
    unproven = [h for h in ranked if h is not primary and all(h is not s for s in secondary)]
    return InvestigationResult(
        primary_cause=primary,
        secondary_causes=secondary,
        unproven_hypotheses=unproven,
        overall_confidence=primary.confidence if primary else 0,
    )


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    return min(base * (2 ** attempt), cap)


class Investigator:
    """Runs one investigation end to end against a single dataset."""

    def __init__(
        self,
        oracle: HypothesisOracle,
        executor: DuckDBExecutor,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 10.0,
        max_concurrency: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.oracle = oracle
        self.executor = executor
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.max_concurrency = max(1, max_concurrency)
        self._sleep = sleep
        self.state = InvestigationState.GENERATING

    def _transition(self, state: InvestigationState) -> None:
        logger.info("Investigation %s -> %s", self.state.value, state.value)
        self.state = state

    async def generate(
        self,
        schema: SchemaContext,
        question: str,
        sample_rows: Sequence[Dict[str, Any]],
    ) -> List[HypothesisProposal]:
        errors: List[str] = []
        for attempt in range(self.max_attempts):
            try:
                return await self.oracle.propose(schema, question, list(sample_rows)[:SAMPLE_ROWS])
            except Exception as exc:
                errors.append(str(exc))
                logger.warning("Hypothesis oracle attempt %d/%d failed: %s", attempt + 1, self.max_attempts, exc)
                if attempt < self.max_attempts - 1:
                    await self._sleep(backoff_delay(attempt, self.backoff_base, self.backoff_cap))
        raise OracleExhausted(self.max_attempts, errors)

    def test_one(self, index: int, proposal: HypothesisProposal) -> Hypothesis:
        hyp_id = f"hyp_{index + 1}"
        try:
            rows = self.executor.run(proposal.test_query)
        except ExecutionError as exc:
            logger.error("Test failed for %s (%s): %s", hyp_id, proposal.hypothesis, exc.message)
            return Hypothesis(
                id=hyp_id,
                hypothesis=proposal.hypothesis,
                test_query=proposal.test_query,
                evidence=None,
                strength=0,
                confidence=0,
                conclusion="Unable to test: query execution failed",
            )
        score = evaluate_evidence(rows)
        evidence = [{k: json_safe(v) for k, v in row.items()} for row in rows[:MAX_EVIDENCE_ROWS]]
        return Hypothesis(
            id=hyp_id,
            hypothesis=proposal.hypothesis,
            test_query=proposal.test_query,
            evidence=evidence,
            strength=score.strength,
            confidence=score.confidence,
            conclusion=score.conclusion,
        )

    async def test(self, proposals: Sequence[HypothesisProposal]) -> List[Hypothesis]:
        if self.max_concurrency == 1:
            tested = []
            for i, p in enumerate(proposals):
                logger.info("Testing hypothesis %d/%d: %s", i + 1, len(proposals), p.hypothesis)
                tested.append(await asyncio.to_thread(self.test_one, i, p))
            return tested

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(i: int, p: HypothesisProposal) -> Hypothesis:
            async with semaphore:
                return await asyncio.to_thread(self.test_one, i, p)

        return list(await asyncio.gather(*(bounded(i, p) for i, p in enumerate(proposals))))

    async def investigate(
        self,
        schema: SchemaContext,
        question: str,
        initial_data: Sequence[Dict[str, Any]],
    ) -> InvestigationResult:
        logger.info("Investigating: %.100s", question)
        self.state = InvestigationState.GENERATING
        proposals = await self.generate(schema, question, initial_data)
        if not proposals:
            self._transition(InvestigationState.RANKED)
            return InvestigationResult.empty()
        self._transition(InvestigationState.TESTING)
        tested = await self.test(proposals)
        self._transition(InvestigationState.RANKED)
        return rank_hypotheses(tested)
