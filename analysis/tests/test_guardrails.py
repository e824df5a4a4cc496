"""
Tests for analytics guardrails - input shape errors versus data sufficiency notes.
"""

import pytest
from datetime import date, datetime, timedelta

from analysis.models import (
    AssetType,
    BenchmarkData,
    DataSource,
    PriceDataPoint,
    ReturnDataPoint,
    TradedAsset,
    Transaction,
    TransactionType,
    ValuedAsset,
)
from analysis.guardrails import (
    InputShapeError,
    DataQualityError,
    validate_price_series,
    validate_return_series,
    validate_transaction,
    validate_asset,
    validate_benchmark,
    validate_confidence,
    sort_series,
    check_data_sufficiency,
    check_price_freshness,
    validate_numeric_outputs
)


def _series(n, start=date(2024, 1, 1)):
    return [PriceDataPoint(date=start + timedelta(days=i), value=100.0 + i) for i in range(n)]


def _returns(n, start=date(2024, 1, 2)):
    return [ReturnDataPoint(date=start + timedelta(days=i), return_value=0.01) for i in range(n)]


class TestInputShape:
    """Malformed input raises InputShapeError (a ValueError)."""

    def test_is_value_error(self):
        assert issubclass(InputShapeError, ValueError)

    def test_price_series(self):
        validate_price_series(_series(3))

        with pytest.raises(InputShapeError):
            validate_price_series([PriceDataPoint(date='2024-01-01', value=1.0)])
        with pytest.raises(InputShapeError):
            validate_price_series([PriceDataPoint(date=date(2024, 1, 1), value=float('inf'))])
        with pytest.raises(InputShapeError):
            validate_price_series([PriceDataPoint(date=date(2024, 1, 1), value=True)])

    def test_price_series_rejects_timestamps(self):
        with pytest.raises(InputShapeError, match="got datetime"):
            validate_price_series([PriceDataPoint(date=datetime(2024, 1, 1, 9, 30), value=1.0)])

    def test_return_series(self):
        validate_return_series(_returns(3))

        with pytest.raises(InputShapeError):
            validate_return_series([PriceDataPoint(date=date(2024, 1, 1), value=1.0)])
        with pytest.raises(InputShapeError):
            validate_return_series([ReturnDataPoint(date=date(2024, 1, 1), return_value=float('nan'))])
        with pytest.raises(InputShapeError):
            validate_return_series([ReturnDataPoint(date=datetime(2024, 1, 1), return_value=0.01)])

    def test_transaction(self):
        ok = Transaction(asset_id='a1', type=TransactionType.BUY, date=date(2024, 1, 1), quantity=1, price=10.0)
        validate_transaction(ok)

        with pytest.raises(InputShapeError, match="requires quantity"):
            validate_transaction(Transaction(asset_id='a1', type=TransactionType.SELL, date=date(2024, 1, 1)))
        with pytest.raises(InputShapeError, match="fees"):
            validate_transaction(Transaction(
                asset_id='a1', type=TransactionType.BUY, date=date(2024, 1, 1), quantity=1, fees=-1.0
            ))
        with pytest.raises(InputShapeError):
            validate_transaction(Transaction(asset_id='a1', type='transfer', date=date(2024, 1, 1)))

    def test_dividend_without_quantity_is_fine(self):
        validate_transaction(Transaction(asset_id='a1', type=TransactionType.DIVIDEND, date=date(2024, 1, 1), price=5.0))

    def test_asset(self):
        with pytest.raises(InputShapeError):
            validate_asset({'id': 'a1'})
        with pytest.raises(InputShapeError):
            validate_asset(TradedAsset(id='a1', symbol='AAPL', type='stock'))
        with pytest.raises(InputShapeError, match="belongs to asset"):
            validate_asset(ValuedAsset(id='c1', type=AssetType.CASH, transactions=(
                Transaction(asset_id='other', type=TransactionType.BUY, date=date(2024, 1, 1), quantity=1),
            )))

    def test_benchmark(self):
        with pytest.raises(InputShapeError):
            validate_benchmark([BenchmarkData(date=date(2024, 1, 1), ticker='SPY',
                                              open=1, high=1, low=1, close=float('nan'))])

    def test_confidence(self):
        validate_confidence(0.99)
        with pytest.raises(InputShapeError):
            validate_confidence(1.0)


class TestSortSeries:

    def test_sorts_and_dedupes(self):
        points = [
            PriceDataPoint(date=date(2024, 1, 2), value=2.0),
            PriceDataPoint(date=date(2024, 1, 1), value=1.0),
            PriceDataPoint(date=date(2024, 1, 2), value=3.0),
        ]

        result = sort_series(points)

        assert [(p.date, p.value) for p in result] == [(date(2024, 1, 1), 1.0), (date(2024, 1, 2), 3.0)]

    def test_mixed_date_and_timestamp(self):
        """Test that mixing dates and timestamps is a shape error, not a sort failure."""
        points = [
            PriceDataPoint(date=date(2024, 1, 2), value=2.0),
            PriceDataPoint(date=datetime(2024, 1, 1, 12, 0), value=1.0),
        ]

        with pytest.raises(InputShapeError):
            sort_series(points)



class TestDataSufficiency:
    """Insufficient data produces notes, never errors."""

    def test_single_point(self):
        notes = check_data_sufficiency(_series(1), [], [], DataSource.DAILY)
        assert len(notes) == 1
        assert 'value point' in notes[0]

    def test_missing_benchmark_and_short_history(self):
        notes = check_data_sufficiency(_series(10), _returns(9), [], DataSource.WEEKLY)

        assert any('benchmark' in n for n in notes)
        assert any('Less than one year' in n for n in notes)

    def test_sufficient(self):
        notes = check_data_sufficiency(_series(60), _returns(59), _returns(59), DataSource.WEEKLY)
        assert notes == []


class TestPriceFreshness:

    def test_stale_and_missing(self):
        history = {
            'AAPL': [BenchmarkData(date=date(2024, 1, 2), ticker='AAPL', open=1, high=1, low=1, close=1)],
            'MSFT': [BenchmarkData(date=date(2024, 1, 30), ticker='MSFT', open=1, high=1, low=1, close=1)],
            'XYZ': [],
        }

        warnings = check_price_freshness(history, as_of=date(2024, 2, 1))

        assert len(warnings) == 2
        assert 'AAPL' in warnings[0] and '30 days old' in warnings[0]
        assert 'XYZ' in warnings[1]


class TestNumericOutputs:

    def test_nested_nan(self):
        with pytest.raises(DataQualityError, match="a.b\\[1\\]"):
            validate_numeric_outputs({'a': {'b': [1.0, float('nan')]}})

    def test_finite_passes(self):
        validate_numeric_outputs({'a': 1.0, 'b': [2, {'c': -0.5}], 'd': None, 'e': 'text'})
