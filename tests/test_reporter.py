import json
from datetime import date
from decimal import Decimal
from pathlib import Path

from analyst.report.reporter import Reporter


def test_save_artifacts(tmp_path):
    reporter = Reporter(base_dir=str(tmp_path), retention=5)
    run_dir = reporter.save_artifacts(
        {'intent': 'trend', 'metrics': ['revenue']},
        'SELECT 1',
        [{'name': '2024-01', 'value': 1.0, 'day': date(2024, 1, 1), 'amount': Decimal('2.5')}],
        '# Summary',
        investigation={'overall_confidence': 0},
        latency_sec=0.5,
    )
    files = {p.name for p in Path(run_dir).iterdir()}
    assert files == {'interpretation.json', 'query.sql', 'chart_data.json', 'investigation.json', 'summary.md'}
    chart = json.loads((Path(run_dir) / 'chart_data.json').read_text())
    assert chart[0]['day'] == '2024-01-01'
    assert chart[0]['amount'] == 2.5
    assert (Path(run_dir) / 'summary.md').read_text().startswith('Latency: 0.50s')


def test_old_runs_are_pruned(tmp_path):
    for name in ('20240101-000000', '20240102-000000', '20240103-000000'):
        (tmp_path / name).mkdir()
    reporter = Reporter(base_dir=str(tmp_path), retention=2)
    run_dir = reporter.save_artifacts({}, None, [], 'x')
    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert len(remaining) == 2
    assert Path(run_dir).name in remaining
    assert '20240101-000000' not in remaining
