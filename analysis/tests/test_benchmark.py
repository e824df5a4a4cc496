"""
Tests for the benchmark comparison engine.
"""

import pytest
import numpy as np
from datetime import date, timedelta

from analysis.models import BenchmarkData, PriceDataPoint, ReturnDataPoint
from analysis.calculations.returns import calculate_returns
from analysis.calculations.benchmark import (
    benchmark_series,
    align_benchmark_series,
    benchmark_returns_for,
    calculate_correlation,
    calculate_tracking_error,
    calculate_up_market_capture,
    calculate_down_market_capture,
    calculate_information_ratio,
    calculate_cumulative_outperformance,
    calculate_yearly_comparison,
    calculate_benchmark_comparisons
)


def _series(values, start=date(2024, 1, 1)):
    return [
        PriceDataPoint(date=start + timedelta(days=i), value=v)
        for i, v in enumerate(values)
    ]


def _returns(values, start=date(2024, 1, 2)):
    return [
        ReturnDataPoint(date=start + timedelta(days=i), return_value=v)
        for i, v in enumerate(values)
    ]


def _bench(closes, start=date(2024, 1, 1), step=1, ticker='SPY'):
    return [
        BenchmarkData(date=start + timedelta(days=i * step), ticker=ticker,
                      open=c, high=c, low=c, close=c, volume=1000)
        for i, c in enumerate(closes)
    ]


class TestAlignment:
    """Tests for benchmark-to-portfolio date alignment."""

    def test_benchmark_series_sorted(self):
        records = list(reversed(_bench([100.0, 101.0])))
        assert [p.value for p in benchmark_series(records)] == [100.0, 101.0]

    def test_carry_forward_over_gaps(self):
        """Test that the last benchmark close is used on portfolio-only dates."""
        portfolio = _series([10.0, 11.0, 12.0, 13.0])  # Jan 1-4
        bench = [
            BenchmarkData(date=date(2024, 1, 1), ticker='SPY', open=100, high=100, low=100, close=100.0),
            BenchmarkData(date=date(2024, 1, 3), ticker='SPY', open=105, high=105, low=105, close=105.0),
        ]

        p, b = align_benchmark_series(portfolio, bench)

        assert [pt.date for pt in p] == [pt.date for pt in b]
        assert [pt.value for pt in b] == [100.0, 100.0, 105.0, 105.0]

    def test_dates_before_benchmark_dropped(self):
        portfolio = _series([10.0, 11.0, 12.0])
        bench = _bench([100.0, 101.0], start=date(2024, 1, 2))

        p, b = align_benchmark_series(portfolio, bench)

        assert [pt.date for pt in p] == [date(2024, 1, 2), date(2024, 1, 3)]

    def test_returns_for(self):
        portfolio = _series([100.0, 110.0, 121.0])
        returns = calculate_returns(portfolio)

        r, b = benchmark_returns_for(returns, portfolio, _bench([200.0, 220.0, 231.0]))

        assert len(r) == len(b) == 2
        assert [x.return_value for x in b] == pytest.approx([0.1, 0.05])

    def test_returns_for_empty_benchmark(self):
        portfolio = _series([100.0, 110.0])
        r, b = benchmark_returns_for(calculate_returns(portfolio), portfolio, [])
        assert r == [] and b == []


class TestCorrelation:
    """Tests for calculate_correlation function."""

    def test_self_correlation(self):
        """Test that any non-constant series correlates 1 with itself."""
        returns = _returns([0.01, -0.03, 0.02, 0.005, -0.01])
        assert calculate_correlation(returns, returns) == pytest.approx(1.0)

    def test_negative(self):
        returns = _returns([0.01, -0.03, 0.02])
        mirrored = _returns([-0.01, 0.03, -0.02])
        assert calculate_correlation(returns, mirrored) == pytest.approx(-1.0)

    def test_matches_numpy(self):
        r = [0.01, -0.03, 0.02, 0.005, -0.01]
        b = [0.02, -0.01, 0.01, 0.0, -0.02]
        expected = np.corrcoef(r, b)[0, 1]
        assert calculate_correlation(_returns(r), _returns(b)) == pytest.approx(expected)

    def test_degenerate(self):
        assert calculate_correlation([], []) == 0.0
        assert calculate_correlation(_returns([0.01, 0.02]), _returns([0.01, 0.01])) == 0.0


class TestTrackingAndInformation:
    """Tests for tracking error and information ratio."""

    def test_identical_series(self):
        returns = _returns([0.01, -0.02, 0.03])
        assert calculate_tracking_error(returns, returns) == 0.0
        assert calculate_information_ratio(returns, returns, 0.0) == 0.0

    def test_known_values(self):
        r = _returns([0.02, 0.00, 0.04])
        b = _returns([0.01, 0.01, 0.01])
        # Excess: 0.01, -0.01, 0.03 -> mean 0.01, sample std 0.02
        te = calculate_tracking_error(r, b)

        assert te == pytest.approx(0.02)
        assert calculate_information_ratio(r, b, te) == pytest.approx(0.5)
        assert calculate_tracking_error(r, b, 'weekly', annualize=True) == pytest.approx(0.02 * np.sqrt(52))


class TestMarketCapture:
    """Tests for up/down market capture."""

    def test_capture_percentages(self):
        b = _returns([0.02, -0.01, 0.04, -0.03])
        r = _returns([0.03, -0.005, 0.03, -0.015])

        # Up: mean(0.03, 0.03) / mean(0.02, 0.04) = 1.0
        assert calculate_up_market_capture(r, b) == pytest.approx(100.0)
        # Down: mean(-0.005, -0.015) / mean(-0.01, -0.03) = 0.5
        assert calculate_down_market_capture(r, b) == pytest.approx(50.0)

    def test_no_down_periods(self):
        b = _returns([0.01, 0.02])
        assert calculate_down_market_capture(b, b) == 0.0


class TestValueComparisons:
    """Tests for cumulative and yearly comparisons."""

    def test_cumulative_outperformance(self):
        portfolio = _series([100.0, 120.0])
        bench = _bench([200.0, 220.0])

        assert calculate_cumulative_outperformance(portfolio, bench) == pytest.approx(0.1)

    def test_cumulative_needs_two_common_dates(self):
        assert calculate_cumulative_outperformance(_series([100.0, 120.0]), []) == 0.0

    def test_yearly(self):
        portfolio = [
            PriceDataPoint(date=date(2023, 12, 29), value=100.0),
            PriceDataPoint(date=date(2024, 6, 28), value=110.0),
            PriceDataPoint(date=date(2024, 12, 31), value=121.0),
        ]
        bench = [
            BenchmarkData(date=date(2023, 12, 29), ticker='SPY', open=1, high=1, low=1, close=400.0),
            BenchmarkData(date=date(2024, 12, 31), ticker='SPY', open=1, high=1, low=1, close=440.0),
        ]

        yearly = calculate_yearly_comparison(portfolio, bench)

        assert len(yearly) == 1
        assert yearly[0].year == 2024
        assert yearly[0].portfolio_return == pytest.approx(0.21)
        assert yearly[0].benchmark_return == pytest.approx(0.10)
        assert yearly[0].outperformance == pytest.approx(0.11)


class TestBenchmarkComparisons:

    def test_composition(self):
        portfolio = _series([100.0, 102.0, 101.0, 105.0])
        bench = _bench([200.0, 202.0, 201.0, 207.0])
        returns = calculate_returns(portfolio)
        _, bench_returns = benchmark_returns_for(returns, portfolio, bench)

        comparisons = calculate_benchmark_comparisons(returns, portfolio, bench_returns, bench, 'daily')

        assert comparisons.correlation == pytest.approx(
            np.corrcoef([r.return_value for r in returns], [b.return_value for b in bench_returns])[0, 1]
        )
        assert comparisons.cumulative_outperformance == pytest.approx(0.05 - 0.035)
        assert comparisons.tracking_error > 0

    def test_empty_benchmark(self):
        """Test that a missing benchmark gives zeros, never raises."""
        portfolio = _series([100.0, 110.0, 105.0])

        comparisons = calculate_benchmark_comparisons(
            calculate_returns(portfolio), portfolio, [], [], 'daily'
        )

        assert comparisons.correlation == 0.0
        assert comparisons.tracking_error == 0.0
        assert comparisons.information_ratio == 0.0
        assert comparisons.market_capture.up_capture == 0.0
        assert comparisons.cumulative_outperformance == 0.0
        assert comparisons.yearly_comparison == []
