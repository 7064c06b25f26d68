# tests/test_aggregate.py
from decimal import Decimal

import numpy as np
import pytest

from sales_pivot import (
    AggregationSpec,
    InvalidInputError,
    UnsupportedAggregationError,
    aggregate,
)


def test_sum_skips_missing_and_non_numeric_values():
    records = [
        {'totalAmount': 10},
        {'totalAmount': None},
        {'totalAmount': 'n/a'},
        {},
        {'totalAmount': 2.5},
    ]
    assert aggregate(records, [{'key': 'totalAmount', 'fn': 'sum'}]) == {'totalAmount': 12.5}


def test_avg_divides_only_by_numeric_values(store_orders):
    result = aggregate(store_orders, [{'key': 'totalAmount', 'fn': 'avg'}])
    assert result['totalAmount'] == pytest.approx((30.5 + 12 + 7.5 + 40) / 4)


def test_count_ignores_the_named_field():
    records = [{'totalAmount': 1}, {}, {'totalAmount': None}]
    assert aggregate(records, [('totalAmount', 'count')]) == {'totalAmount': 3}
    assert aggregate(records, [('doesNotExist', 'count')]) == {'doesNotExist': 3}


def test_min_and_max(store_orders):
    result = aggregate(store_orders, [
        AggregationSpec('totalAmount', 'min', 'smallest'),
        AggregationSpec('totalAmount', 'max', 'largest'),
    ])
    assert result == {'smallest': 7.5, 'largest': 40}


def test_no_numeric_values_gives_empty_value():
    records = [{'taxAmount': None}, {}]
    specs = [('taxAmount', 'avg', 'a'), ('taxAmount', 'min', 'b'), ('taxAmount', 'max', 'c'),
             ('taxAmount', 'sum', 'd')]

    assert aggregate(records, specs) == {'a': 0, 'b': 0, 'c': 0, 'd': 0}
    assert aggregate(records, specs, empty_value=None) == {'a': None, 'b': None, 'c': None, 'd': 0}


def test_numpy_and_decimal_values_are_numbers():
    records = [
        {'qty': np.int64(3)},
        {'qty': np.float64(1.5)},
        {'qty': Decimal('0.5')},
        {'qty': np.nan},
        {'qty': True},
    ]
    result = aggregate(records, [('qty', 'sum')])
    assert result == {'qty': 5.0}
    assert type(result['qty']) is float


def test_empty_record_set():
    result = aggregate([], [('totalAmount', 'sum', 's'), ('totalAmount', 'count', 'c')])
    assert result == {'s': 0, 'c': 0}


def test_unknown_function_is_rejected():
    with pytest.raises(UnsupportedAggregationError) as excinfo:
        aggregate([{'totalAmount': 1}], [{'key': 'totalAmount', 'fn': 'median'}])
    assert excinfo.value.fn == 'median'


def test_duplicate_output_columns_are_rejected():
    with pytest.raises(InvalidInputError):
        aggregate([], [('totalAmount', 'sum'), ('totalAmount', 'avg')])


def test_records_must_be_mappings():
    with pytest.raises(InvalidInputError):
        aggregate('not records', [('totalAmount', 'sum')])
    with pytest.raises(InvalidInputError):
        aggregate([1, 2], [('totalAmount', 'sum')])
