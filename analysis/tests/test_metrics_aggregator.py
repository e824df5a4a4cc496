"""
Tests for the metrics aggregator.
End-to-end composition over in-memory model objects.
"""

import json
import pytest
from datetime import date, datetime, timedelta

from analysis.models import (
    AnalyticsResult,
    AssetType,
    BenchmarkData,
    DataSource,
    PriceDataPoint,
    TradedAsset,
    Transaction,
    TransactionType,
    ValuedAsset,
)
from analysis.metrics_aggregator import compose_analytics


START = date(2024, 1, 1)


def _portfolio(n=30):
    txn = Transaction(asset_id='a1', type=TransactionType.BUY, date=START, quantity=10, price=100.0)
    asset = TradedAsset(id='a1', symbol='AAPL', type=AssetType.STOCK, transactions=(txn,), current_price=120.0)
    cash = ValuedAsset(id='c1', type=AssetType.CASH, transactions=(
        Transaction(asset_id='c1', type=TransactionType.BUY, date=START, quantity=1, price=300.0),
    ))
    values = [1000.0 + 10 * i + (15 if i % 3 == 0 else -5) for i in range(n)]
    series = [PriceDataPoint(date=START + timedelta(days=i), value=v) for i, v in enumerate(values)]
    return series, [asset, cash], [txn] + list(cash.transactions)


def _benchmark(n=30):
    return [
        BenchmarkData(date=START + timedelta(days=i), ticker='SPY', open=1, high=1, low=1,
                      close=400.0 + 2 * i + (3 if i % 4 == 0 else -1))
        for i in range(n)
    ]


class TestComposeAnalytics:
    """Tests for compose_analytics function."""

    def test_full_result(self):
        series, assets, txns = _portfolio()

        result = compose_analytics(
            series=series,
            transactions=txns,
            assets=assets,
            benchmark=_benchmark(),
            data_source='daily',
            risk_free_rate=0.03,
            as_of=START + timedelta(days=29),
            benchmark_ticker='SPY',
            calculated_at=datetime(2024, 1, 30, 12, 0)
        )

        assert isinstance(result, AnalyticsResult)
        assert result.metadata.data_points == 30
        assert result.metadata.data_source is DataSource.DAILY
        assert result.metadata.date_range == {'start': START, 'end': START + timedelta(days=29)}
        assert result.metadata.asset_count == 2
        assert result.metadata.asset_types == {'stock': 1, 'cash': 1}
        assert result.metadata.benchmark_ticker == 'SPY'
        assert result.risk_metrics.volatility > 0
        assert result.benchmark_comparisons.correlation != 0
        # Allocation by value: 10 x 120 stock vs 300 cash
        shares = {s.type: s.percentage for s in result.asset_allocation.by_type}
        assert shares == pytest.approx({'stock': 80.0, 'cash': 20.0})

    def test_json_serializable(self):
        series, assets, txns = _portfolio()
        result = compose_analytics(series, txns, assets, _benchmark(), 'daily', 0.03, as_of=START)

        payload = json.loads(json.dumps(result.to_dict(), default=str))

        assert set(payload) == {
            'risk_metrics', 'performance_metrics', 'benchmark_comparisons',
            'asset_allocation', 'metadata'
        }
        assert payload['metadata']['data_source'] == 'daily'

    def test_idempotent_except_timestamp(self):
        """Test that identical inputs give identical statistics."""
        series, assets, txns = _portfolio()

        first = compose_analytics(series, txns, assets, _benchmark(), 'weekly', 0.03, as_of=START,
                                  calculated_at=datetime(2024, 1, 1))
        second = compose_analytics(series, txns, assets, _benchmark(), 'weekly', 0.03, as_of=START,
                                   calculated_at=datetime(2024, 6, 1))

        assert first.statistics() == second.statistics()
        assert first.to_dict() != second.to_dict()

    def test_unordered_series(self):
        series, assets, txns = _portfolio()
        ordered = compose_analytics(series, txns, assets, _benchmark(), 'daily', 0.03, as_of=START)
        shuffled = compose_analytics(list(reversed(series)), txns, assets, _benchmark(), 'daily', 0.03, as_of=START)

        assert ordered.statistics() == shuffled.statistics()

    def test_missing_benchmark(self):
        """Test that benchmark metrics fall back to zero with a note."""
        series, assets, txns = _portfolio()

        result = compose_analytics(series, txns, assets, [], 'daily', 0.03, as_of=START,
                                   notes=['No benchmark data stored for SPY'])

        assert result.risk_metrics.beta == 0.0
        assert result.performance_metrics.alpha == 0.0
        assert result.benchmark_comparisons.correlation == 0.0
        assert 'No benchmark data stored for SPY' in result.metadata.data_quality_notes
        assert any('benchmark' in n for n in result.metadata.data_quality_notes[:-1])

    def test_degenerate_inputs(self):
        """Test that an empty portfolio yields an all-zero result."""
        result = compose_analytics([], [], [], [], DataSource.DAILY, 0.03, as_of=START)

        assert result.metadata.data_points == 0
        assert result.metadata.date_range == {'start': None, 'end': None}
        assert result.performance_metrics.total_return == 0.0
        assert result.performance_metrics.monthly_returns == []
        assert result.performance_metrics.best_worst_periods.best_month is None
        assert result.risk_metrics.volatility == 0.0
        assert result.asset_allocation.by_type == []
        assert result.metadata.data_quality_notes
