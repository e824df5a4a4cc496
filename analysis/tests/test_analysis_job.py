"""
Tests for analysis job orchestration - SQLite stores to AnalyticsResult.
Uses in-memory SQLite populated with a small portfolio and benchmark.
"""

import pytest
import sqlite3
from datetime import date, datetime, timedelta

from analysis.models import DataSource, PriceDataPoint
from analysis.analysis_job import (
    AnalyticsCache,
    PortfolioNotFoundError,
    compute_analytics,
    select_data_source,
    with_as_of_point
)
from storage.loaders import (
    init_database,
    upsert_portfolio,
    upsert_assets,
    upsert_transactions,
    upsert_prices,
    upsert_current_prices,
    upsert_snapshots
)

START = date(2024, 1, 1)
AS_OF = date(2024, 3, 31)


def _price_rows(ticker, base, days=91):
    rows = []
    for i in range(days):
        close = base + i + (3.0 if i % 3 == 0 else 0.0)
        rows.append({
            'ticker': ticker, 'date': START + timedelta(days=i), 'open': close,
            'high': close, 'low': close, 'close': close, 'adj_close': None,
            'volume': 1000, 'source': 'yfinance', 'as_of': START + timedelta(days=i),
            'ingested_at': datetime(2024, 4, 1),
        })
    return rows


@pytest.fixture
def portfolio_db():
    """Portfolio p1: 10 AAPL and a cash position, with AAPL and SPY closes for Q1 2024."""
    conn = sqlite3.connect(':memory:')
    init_database(conn)
    upsert_portfolio(conn, 'p1', 'Main')
    upsert_assets(conn, [
        {'id': 'a1', 'portfolio_id': 'p1', 'symbol': 'AAPL', 'type': 'stock'},
        {'id': 'c1', 'portfolio_id': 'p1', 'name': 'Savings', 'type': 'cash'},
    ])
    upsert_transactions(conn, [
        {'id': 't1', 'asset_id': 'a1', 'type': 'buy', 'date': START, 'quantity': 10, 'price': 100.0},
        {'id': 't2', 'asset_id': 'c1', 'type': 'buy', 'date': START, 'quantity': 1, 'price': 500.0},
    ])
    upsert_prices(conn, _price_rows('AAPL', 100.0))
    upsert_prices(conn, _price_rows('SPY', 400.0))
    return conn


class TestSelectDataSource:

    def test_requested_wins(self):
        assert select_data_source('daily', 500) is DataSource.DAILY
        assert select_data_source(DataSource.WEEKLY, 0) is DataSource.WEEKLY

    def test_threshold(self):
        assert select_data_source(None, 51) is DataSource.DAILY
        assert select_data_source(None, 52) is DataSource.WEEKLY

    def test_invalid(self):
        with pytest.raises(ValueError):
            select_data_source('monthly', 0)


class TestWithAsOfPoint:

    def test_replaces_as_of_and_drops_later(self):
        series = [
            PriceDataPoint(date=date(2024, 1, 1), value=100.0),
            PriceDataPoint(date=date(2024, 1, 8), value=110.0),
            PriceDataPoint(date=date(2024, 1, 15), value=120.0),
        ]

        result = with_as_of_point(series, date(2024, 1, 8), 115.0)

        assert [(p.date, p.value) for p in result] == [
            (date(2024, 1, 1), 100.0), (date(2024, 1, 8), 115.0)
        ]


class TestComputeAnalytics:
    """Tests for compute_analytics function."""

    def test_daily(self, portfolio_db):
        result = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=AS_OF, risk_free_rate=0.03)

        assert result.metadata.data_source is DataSource.DAILY
        assert result.metadata.data_points == 91
        assert result.metadata.date_range == {'start': START, 'end': AS_OF}
        assert result.metadata.benchmark_ticker == 'SPY'
        assert result.metadata.asset_count == 2
        assert result.benchmark_comparisons.correlation != 0.0

    def test_weekly_without_snapshots_reconstructs(self, portfolio_db):
        result = compute_analytics(portfolio_db, 'p1', data_source='weekly', as_of=AS_OF)

        # Jan 1 + 12 weeks reaches Mar 25, then the as_of point
        assert result.metadata.data_source is DataSource.WEEKLY
        assert result.metadata.data_points == 14
        assert result.metadata.date_range['end'] == AS_OF

    def test_default_source_is_daily_with_few_snapshots(self, portfolio_db):
        upsert_snapshots(portfolio_db, 'p1', [PriceDataPoint(date=START, value=1500.0)])

        result = compute_analytics(portfolio_db, 'p1', as_of=AS_OF)

        assert result.metadata.data_source is DataSource.DAILY

    def test_default_source_is_weekly_with_enough_snapshots(self, portfolio_db):
        """Test that 52 stored snapshots switch to weekly with a live as_of point."""
        first = date(2023, 1, 1)
        upsert_snapshots(portfolio_db, 'p1', [
            PriceDataPoint(date=first + timedelta(days=7 * k), value=1000.0 + k) for k in range(52)
        ])
        upsert_snapshots(portfolio_db, 'p1', [PriceDataPoint(date=date(2024, 5, 1), value=9999.0)])
        upsert_current_prices(portfolio_db, [
            {'ticker': 'AAPL', 'price': 300.0, 'updated_at': datetime(2024, 3, 31), 'source': 'yfinance'}
        ])

        result = compute_analytics(portfolio_db, 'p1', as_of=AS_OF)

        assert result.metadata.data_source is DataSource.WEEKLY
        # 52 snapshots before as_of plus the live point; the May snapshot is ignored
        assert result.metadata.data_points == 53
        assert result.metadata.date_range == {'start': first, 'end': AS_OF}
        # Live value: 10 x 300 + 500 cash against the first snapshot of 1000
        assert result.performance_metrics.total_return == pytest.approx(3500.0 / 1000.0 - 1)

    def test_later_quote_ignored_for_past_as_of(self, portfolio_db):
        """Test that a quote fetched after a past as_of leaves the last close in place."""
        upsert_current_prices(portfolio_db, [
            {'ticker': 'AAPL', 'price': 300.0, 'updated_at': datetime(2024, 6, 1, 16, 0), 'source': 'yfinance'}
        ])

        result = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=AS_OF, risk_free_rate=0.03)

        # Mar 31 close is 193 (day 90), Jan 1 close is 103; cash adds 500 to both
        assert result.performance_metrics.total_return == pytest.approx(2430.0 / 1530.0 - 1)
        shares = {s.type: s.percentage for s in result.asset_allocation.by_type}
        assert shares['stock'] == pytest.approx(1930.0 / 2430.0 * 100)

    def test_flat_closes_with_later_quote(self, portfolio_db):
        upsert_portfolio(portfolio_db, 'flat', 'Flat')
        upsert_assets(portfolio_db, [{'id': 'f1', 'portfolio_id': 'flat', 'symbol': 'FLAT', 'type': 'stock'}])
        upsert_transactions(portfolio_db, [
            {'id': 'ft1', 'asset_id': 'f1', 'type': 'buy', 'date': START, 'quantity': 10, 'price': 100.0},
        ])
        rows = _price_rows('FLAT', 100.0)
        for row in rows:
            row.update(open=100.0, high=100.0, low=100.0, close=100.0)
        upsert_prices(portfolio_db, rows)
        upsert_current_prices(portfolio_db, [
            {'ticker': 'FLAT', 'price': 300.0, 'updated_at': datetime.now(), 'source': 'yfinance'}
        ])

        result = compute_analytics(portfolio_db, 'flat', data_source='daily', as_of=AS_OF)

        assert result.performance_metrics.total_return == pytest.approx(0.0)
        assert result.performance_metrics.annualized_return == pytest.approx(0.0)

    def test_as_of_excludes_later_prices(self, portfolio_db):
        result = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=date(2024, 2, 1))

        assert result.metadata.data_points == 32
        assert result.metadata.date_range['end'] == date(2024, 2, 1)

    def test_missing_benchmark_note(self, portfolio_db):
        result = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=AS_OF, benchmark_ticker='QQQ')

        assert result.risk_metrics.beta == 0.0
        assert result.benchmark_comparisons.correlation == 0.0
        assert any('No benchmark data stored for QQQ' in n for n in result.metadata.data_quality_notes)

    def test_stale_prices_noted(self, portfolio_db):
        result = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=date(2024, 6, 30))

        assert any('AAPL' in n for n in result.metadata.data_quality_notes)

    def test_unknown_portfolio(self, portfolio_db):
        with pytest.raises(PortfolioNotFoundError):
            compute_analytics(portfolio_db, 'missing', as_of=AS_OF)

    def test_portfolio_without_assets(self, portfolio_db):
        upsert_portfolio(portfolio_db, 'p2', 'Empty')

        result = compute_analytics(portfolio_db, 'p2', as_of=AS_OF)

        assert result.metadata.data_points == 0
        assert result.performance_metrics.total_return == 0.0
        assert 'Portfolio has no assets' in result.metadata.data_quality_notes

    def test_idempotent(self, portfolio_db):
        """Test that two runs over unchanged stores give identical statistics."""
        first = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=AS_OF, risk_free_rate=0.03)
        second = compute_analytics(portfolio_db, 'p1', data_source='daily', as_of=AS_OF, risk_free_rate=0.03)

        assert first is not second
        assert first.statistics() == second.statistics()

    def test_no_open_transaction_left(self, portfolio_db):
        compute_analytics(portfolio_db, 'p1', as_of=AS_OF)
        assert not portfolio_db.in_transaction


class TestAnalyticsCache:
    """Tests for result caching."""

    def test_hit_and_refresh(self, portfolio_db):
        cache = AnalyticsCache()

        first = compute_analytics(portfolio_db, 'p1', as_of=AS_OF, cache=cache)
        hit = compute_analytics(portfolio_db, 'p1', as_of=AS_OF, cache=cache)
        refreshed = compute_analytics(portfolio_db, 'p1', as_of=AS_OF, cache=cache, refresh=True)

        assert hit is first
        assert refreshed is not first
        assert cache.get('p1', AS_OF) is refreshed
        assert len(cache) == 1

    def test_keyed_by_as_of(self, portfolio_db):
        cache = AnalyticsCache()

        compute_analytics(portfolio_db, 'p1', as_of=AS_OF, cache=cache)
        compute_analytics(portfolio_db, 'p1', as_of=date(2024, 2, 1), cache=cache)

        assert ('p1', AS_OF) in cache
        assert len(cache) == 2
        assert cache.invalidate('p1') == 2
        assert cache.invalidate('p1') == 0
