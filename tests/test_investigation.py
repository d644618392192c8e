import asyncio

import pytest

from analyst.errors import ExecutionError, InterpretationFailure, OracleExhausted
from analyst.planner.intent import HypothesisProposal
from analyst.tools.investigation import (
    Hypothesis,
    InvestigationState,
    Investigator,
    backoff_delay,
    evaluate_evidence,
    extract_numeric_value,
    rank_hypotheses,
)
from analyst.utils.answers import summarize_investigation
from analyst.utils.schema_cache import SchemaContext

schema = SchemaContext(metrics=('revenue',), dimensions=('region',), time_column='order_date')


class FakeExecutor:
    def __init__(self, results):
        self.results = results
        self.statements = []

    def run(self, sql, params=None):
        self.statements.append(sql)
        result = self.results[sql]
        if isinstance(result, Exception):
            raise result
        return result


class FlakyOracle:
    def __init__(self, failures, proposals):
        self.failures = failures
        self.proposals = proposals
        self.calls = 0

    async def propose(self, schema, question, sample_rows):
        self.calls += 1
        if self.calls <= self.failures:
            raise InterpretationFailure(f'boom {self.calls}')
        return self.proposals


def _hyp(i, strength, confidence):
    return Hypothesis(f'hyp_{i}', f'hypothesis {i}', 'SELECT 1', None, strength, confidence, '')


def test_exactly_fifty_percent_change_is_strength_75():
    score = evaluate_evidence([{'total': 150}, {'total': 100}])
    # (150 - 100) / 100 is exactly 50%, which is not above the top tier
    assert score.strength == 75
    assert score.confidence == 70
    assert 'increased by 50.0%' in score.conclusion


def test_just_over_fifty_percent_is_strength_90():
    score = evaluate_evidence([{'total': 150.01}, {'total': 100}])
    assert score.strength == 90


def test_decrease_direction_and_confidence_tiers():
    score = evaluate_evidence([{'total': 40}, {'total': 60}])
    assert score.strength == 75
    assert score.confidence == 60
    assert 'decreased' in score.conclusion
    assert evaluate_evidence([{'total': 5}, {'total': 6}]).confidence == 50


def test_small_change_is_weak():
    assert evaluate_evidence([{'x': 102}, {'x': 100}]).strength == 15


def test_single_value_and_empty_evidence():
    score = evaluate_evidence([{'total': 42}])
    assert (score.strength, score.confidence) == (40, 50)
    assert (evaluate_evidence([]).strength, evaluate_evidence([]).confidence) == (0, 0)
    assert (evaluate_evidence(None).strength, evaluate_evidence(None).confidence) == (0, 0)


def test_rows_without_numbers():
    score = evaluate_evidence([{'region': 'North'}, {'region': 'South'}])
    assert (score.strength, score.confidence) == (25, 40)


def test_zero_baseline_falls_back_to_single_value():
    score = evaluate_evidence([{'total': 10}, {'total': 0}])
    assert (score.strength, score.confidence) == (40, 50)


def test_extract_numeric_value():
    assert extract_numeric_value({'region': 'North', 'total': '$1,200'}) == 1200
    assert extract_numeric_value({'flag': True, 'n': 3}) == 3
    assert extract_numeric_value({'region': 'North'}) is None
    assert extract_numeric_value(None) is None


def test_ranking_example():
    hyps = [_hyp(i, s, c) for i, (s, c) in enumerate([(40, 45), (0, 0), (80, 80), (20, 30), (60, 50)])]
    result = rank_hypotheses(hyps)
    assert (result.primary_cause.strength, result.primary_cause.confidence) == (80, 80)
    assert [(h.strength, h.confidence) for h in result.secondary_causes] == [(60, 50), (40, 45)]
    assert [(h.strength, h.confidence) for h in result.unproven_hypotheses] == [(20, 30), (0, 0)]
    assert result.overall_confidence == 80


def test_no_primary_means_zero_confidence():
    result = rank_hypotheses([_hyp(1, 40, 45), _hyp(2, 45, 90)])
    assert result.primary_cause is None
    assert result.overall_confidence == 0
    assert len(result.secondary_causes) == 2
    assert summarize_investigation(result)['summary'].startswith('Unable to determine root cause')


def test_backoff_is_capped():
    assert [backoff_delay(a) for a in range(5)] == [1, 2, 4, 8, 10]


def test_investigation_end_to_end():
    proposals = [
        HypothesisProposal(hypothesis='Fewer orders in the North', test_query='Q1'),
        HypothesisProposal(hypothesis='Prices were cut', test_query='Q2'),
        HypothesisProposal(hypothesis='Broken query', test_query='Q3'),
    ]
    executor = FakeExecutor({
        'Q1': [{'orders': 400}, {'orders': 1000}],
        'Q2': [{'avg_price': 9.5}],
        'Q3': ExecutionError('Q3', 'Binder Error'),
    })
    investigator = Investigator(FlakyOracle(0, proposals), executor)
    result = asyncio.run(investigator.investigate(schema, 'Why did revenue drop?', [{'name': 'North', 'value': 1}]))
    assert investigator.state is InvestigationState.RANKED
    assert result.primary_cause.hypothesis == 'Fewer orders in the North'
    assert result.primary_cause.strength == 90
    assert result.primary_cause.id == 'hyp_1'
    assert [h.hypothesis for h in result.secondary_causes] == ['Prices were cut']
    broken = result.unproven_hypotheses[0]
    assert (broken.strength, broken.confidence, broken.evidence) == (0, 0, None)
    assert broken.conclusion == 'Unable to test: query execution failed'
    summary = summarize_investigation(result)
    assert summary['confidence'] == 'high'
    assert 'Fewer orders in the North' in summary['summary']


def test_oracle_is_retried_with_backoff():
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    oracle = FlakyOracle(2, [HypothesisProposal(hypothesis='h', test_query='Q')])
    investigator = Investigator(oracle, FakeExecutor({'Q': [{'n': 1}]}), max_attempts=3, sleep=fake_sleep)
    result = asyncio.run(investigator.investigate(schema, 'why?', []))
    assert oracle.calls == 3
    assert delays == [1.0, 2.0]
    assert result.primary_cause is None
    assert result.secondary_causes[0].hypothesis == 'h'


def test_oracle_exhaustion_aborts():
    async def fake_sleep(seconds):
        pass

    oracle = FlakyOracle(10, [])
    executor = FakeExecutor({})
    investigator = Investigator(oracle, executor, max_attempts=3, sleep=fake_sleep)
    with pytest.raises(OracleExhausted) as info:
        asyncio.run(investigator.investigate(schema, 'why?', []))
    assert info.value.attempts == 3
    assert oracle.calls == 3
    assert executor.statements == []


def test_no_proposals_gives_empty_result():
    investigator = Investigator(FlakyOracle(0, []), FakeExecutor({}))
    result = asyncio.run(investigator.investigate(schema, 'why?', []))
    assert result.primary_cause is None
    assert result.overall_confidence == 0


def test_bounded_concurrency_keeps_order():
    proposals = [HypothesisProposal(hypothesis=f'h{i}', test_query=f'Q{i}') for i in range(4)]
    executor = FakeExecutor({f'Q{i}': [{'n': i + 1}] for i in range(4)})
    investigator = Investigator(FlakyOracle(0, proposals), executor, max_concurrency=3)
    tested = asyncio.run(investigator.test(proposals))
    assert [h.id for h in tested] == ['hyp_1', 'hyp_2', 'hyp_3', 'hyp_4']
