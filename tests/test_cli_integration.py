import os, subprocess, sys

PYTHON = sys.executable

from rich.console import Console

from analyst.cli.main import EXIT_MISSING_DATASET, EXIT_ORACLE_EXHAUSTED, EXIT_RATE_LIMITED, find_dataset_path, main, run_once
from analyst.errors import OracleExhausted, RateLimitExceeded
from analyst.pipeline import AnalysisResponse
from analyst.planner.intent import QueryIntent


def run_query(path: str, q: str, *extra):
    env = os.environ.copy()
    # no key: the oracles fail and the CLI answers with flagged placeholder data
    env['OPENAI_API_KEY'] = ''
    env['HYPOTHESIS_BACKOFF_BASE_SEC'] = '0'
    cmd = [PYTHON, '-m', 'analyst.cli.main', '--path', path, '--query', q, '--no-save-run', *extra]
    proc = subprocess.run(cmd, capture_output=True, text=True, env=env)
    return proc.returncode, proc.stdout + proc.stderr


class StubPipeline:
    def __init__(self, error):
        self.error = error
        self.explained = []

    async def run_analysis(self, dataset_id, user_id, question):
        return AnalysisResponse(
            interpretation=QueryIntent(intent='comparison', metrics=['revenue'], dimensions=['region']),
            data=[{'name': 'East', 'value': 2150.0}],
            sql='SELECT 1',
        )

    async def explain(self, dataset_id, user_id, question, response):
        self.explained.append(user_id)
        raise self.error


def test_cli_answers_without_oracle(sales_csv):
    code, out = run_query(sales_csv, 'top 3 regions by revenue')
    assert code == 0
    assert 'Answer:' in out
    assert 'interpretation_failed' in out


def test_cli_causal_question_on_placeholder_data_is_not_investigated(sales_csv):
    code, out = run_query(sales_csv, 'why did revenue drop?')
    assert code == 0
    assert 'Investigation aborted' not in out
    assert 'Unable to determine root cause' in out


def test_run_once_reports_exhausted_oracle():
    pipeline = StubPipeline(OracleExhausted(3, ['boom']))
    code = run_once(pipeline, Console(quiet=True), 'sales', 'alice', 'Why is East ahead?', save_run=False)
    assert code == EXIT_ORACLE_EXHAUSTED
    assert pipeline.explained == ['alice']


def test_run_once_rate_limits_investigation():
    pipeline = StubPipeline(RateLimitExceeded('alice', 0))
    code = run_once(pipeline, Console(quiet=True), 'sales', 'alice', 'Why is East ahead?', save_run=False)
    assert code == EXIT_RATE_LIMITED


def test_cli_missing_dataset(tmp_path):
    assert main(['--path', str(tmp_path / 'nope.csv'), '--query', 'x', '--no-save-run']) == EXIT_MISSING_DATASET


def test_find_dataset_path_prefers_data_dir(tmp_path):
    (tmp_path / 'notes.txt').write_text('x')
    (tmp_path / 'orders.parquet').write_text('')
    assert find_dataset_path(None, str(tmp_path)).endswith('orders.parquet')
