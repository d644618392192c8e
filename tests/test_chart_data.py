import math
from datetime import date
from decimal import Decimal

import numpy as np

from analyst.planner.intent import QueryIntent
from analyst.report.chart_data import (
    normalize_chart_data,
    normalize_for_intent,
    to_number,
    validate_chart_data,
)
from analyst.report.synthetic import generate_synthetic_data


def test_canonical_rows_pass_through():
    rows = [{'name': 'A', 'value': 1.0}, {'name': 'B', 'value': 2}]
    assert normalize_chart_data(rows) == rows
    assert normalize_chart_data(normalize_chart_data(rows)) == rows


def test_normalization_is_idempotent():
    rows = [{'region': 'North', 'revenue': '$1,200.50'}, {'region': 'South', 'revenue': None}]
    once = normalize_chart_data(rows, ['revenue'], ['region'])
    assert normalize_chart_data(once, ['revenue'], ['region']) == once


def test_currency_strings_are_parsed():
    rows = [{'region': 'North', 'revenue': '$1,200.50'}, {'region': 'India', 'revenue': '₹ 3,000'}]
    data = normalize_chart_data(rows, ['revenue'], ['region'])
    assert [p['name'] for p in data] == ['North', 'India']
    assert [p['value'] for p in data] == [1200.5, 3000.0]


def test_unparseable_values_become_zero():
    assert to_number('n/a') == 0
    assert to_number(None) == 0
    assert to_number(float('nan')) == 0
    assert to_number(np.int64(7)) == 7.0
    assert to_number(Decimal('2.5')) == 2.5


def test_values_are_always_finite():
    rows = [{'k': 'a', 'v': float('inf')}, {'k': 'b', 'v': np.int64(2**40)}, {'k': 'c', 'v': 'junk'}]
    data = normalize_chart_data(rows, ['v'], ['k'])
    assert all(isinstance(p['value'], float) and math.isfinite(p['value']) for p in data)
    assert validate_chart_data(data)


def test_empty_and_garbage_input():
    assert normalize_chart_data(None) == []
    assert normalize_chart_data([]) == []
    assert normalize_chart_data(['not', 'rows']) == []


def test_multi_metric_keeps_every_metric():
    rows = [{'product': 'Widget', 'revenue': 10, 'quantity': 3}]
    data = normalize_chart_data(rows, ['revenue', 'quantity'], ['product'])
    assert data == [{'name': 'Widget', 'revenue': 10.0, 'quantity': 3.0, 'value': 10.0}]


def test_implied_metric_when_none_declared():
    rows = [{'region': 'North', 'count': 4}, {'region': 'South', 'count': 2}]
    data = normalize_chart_data(rows)
    assert [(p['name'], p['value']) for p in data] == [('North', 4.0), ('South', 2.0)]


def test_missing_names_get_placeholders():
    rows = [{'revenue': 5}, {'revenue': 7}]
    data = normalize_chart_data(rows, ['revenue'], ['region'])
    assert [p['name'] for p in data] == ['5', '7']
    data = normalize_chart_data([{}], ['revenue'])
    assert data[0]['name'] == 'Item 1'


def test_trend_names_come_from_time_dimension():
    intent = QueryIntent(intent='trend', metrics=['revenue'], time_dimension='order_date')
    rows = [{'order_date': date(2024, 1, 1), 'revenue': 3}]
    assert normalize_for_intent(rows, intent)[0]['name'] == '2024-01-01'


def test_validator():
    assert validate_chart_data([{'name': 'a', 'value': 1}])
    assert not validate_chart_data([])
    assert not validate_chart_data([{'name': 'a'}])
    assert not validate_chart_data([{'name': 1, 'value': 1}])
    assert not validate_chart_data([{'name': 'a', 'value': float('nan')}])
    assert not validate_chart_data([{'name': 'a', 'value': True}])


def test_synthetic_data_is_flagged_and_valid():
    rng = np.random.default_rng(0)
    ranking = generate_synthetic_data(QueryIntent(intent='ranking', metrics=['revenue'], limit=3), rng)
    assert len(ranking) == 3
    assert [p['value'] for p in ranking] == sorted((p['value'] for p in ranking), reverse=True)
    assert all(p['synthetic'] and 'revenue' in p for p in ranking)
    trend = generate_synthetic_data(QueryIntent(intent='trend'), rng)
    assert [p['name'] for p in trend] == ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun']
    assert validate_chart_data(trend)


def test_ints_too_large_for_float_do_not_raise():
    data = normalize_chart_data([{'name': 'A', 'value': 10 ** 400}, {'name': 'B', 'value': 5}])
    assert [p['name'] for p in data] == ['A', 'B']
    assert all(math.isfinite(p['value']) for p in data)
    assert data[0]['value'] == 0.0
    assert validate_chart_data(data)
    assert not validate_chart_data([{'name': 'a', 'value': 10 ** 400}])
    assert normalize_chart_data([{'k': 'x', 'v': -10 ** 400}], ['v'], ['k'])[0]['value'] == 0.0
