import pytest

from analyst.exec.duck import DuckDBExecutor
from analyst.utils.schema_cache import SchemaCache, SchemaContext, StaticSchemaProvider, classify_columns


def test_classify_columns():
    ctx = classify_columns([
        ('order_date', 'DATE'),
        ('region', 'VARCHAR'),
        ('revenue', 'DECIMAL(18,2)'),
        ('quantity', 'BIGINT'),
        ('shipped_at', 'TIMESTAMP'),
    ])
    assert ctx.metrics == ('revenue', 'quantity')
    assert ctx.time_column == 'order_date'
    assert ctx.dimensions == ('order_date', 'region', 'shipped_at')


def test_describe_csv(sales_csv):
    cache = SchemaCache(domain='retail')
    cache.register('sales', sales_csv)
    ctx = cache.get('sales')
    assert ctx.metrics == ('revenue',)
    assert ctx.time_column == 'order_date'
    assert set(ctx.dimensions) == {'region', 'product', 'order_date'}
    assert ctx.domain == 'retail'
    assert cache.get('sales') is ctx


def test_get_or_load_keys_by_path(sales_csv):
    cache = SchemaCache()
    ctx = cache.get_or_load(DuckDBExecutor(sales_csv))
    assert ctx.has_column('revenue')
    assert not ctx.has_column('profit')


def test_unknown_dataset():
    with pytest.raises(KeyError):
        SchemaCache().get('nope')
    with pytest.raises(KeyError):
        StaticSchemaProvider({}).get('nope')


def test_from_dict_accepts_camel_case():
    ctx = SchemaContext.from_dict({'metrics': ['a'], 'dimensions': ['b'], 'timeColumn': 'c'})
    assert ctx.columns == {'a', 'b', 'c'}
    assert '"time_column": "c"' in ctx.to_prompt()
