"""
Benchmark comparison engine.
Pure functions comparing portfolio returns with a reference index.

Return-based metrics expect series already aligned by date
(see benchmark_returns_for); value-based metrics align internally.
"""

import math
from typing import Iterable, List, Tuple, Union

import numpy as np

from analysis.models import (
    BenchmarkComparisons,
    BenchmarkData,
    DataSource,
    MarketCapture,
    PriceDataPoint,
    ReturnDataPoint,
    YearlyComparison,
    as_data_source,
)
from analysis.guardrails import sort_series, validate_benchmark
from analysis.calculations.returns import (
    align_returns_by_date,
    calculate_returns,
    calculate_total_return,
    carry_forward_values,
    returns_by_period,
)
from analysis.calculations.risk import paired_values
from analysis.calculations.volatility import sample_std


def benchmark_series(benchmark: Iterable[BenchmarkData]) -> List[PriceDataPoint]:
    """Benchmark closes as a value series."""
    records = list(benchmark)
    validate_benchmark(records)
    return sort_series(PriceDataPoint(date=r.date, value=float(r.close)) for r in records)


def align_benchmark_series(
    series: Iterable[PriceDataPoint],
    benchmark: Iterable[BenchmarkData]
) -> Tuple[List[PriceDataPoint], List[PriceDataPoint]]:
    """
    Sample the benchmark on the portfolio's dates.

    The benchmark close carried forward to each portfolio date is used, so
    weekends and holidays in the portfolio series still line up. Portfolio
    dates before the first benchmark close are dropped from both sides.

    Returns:
        Tuple (portfolio points, benchmark points) sharing the same dates
    """
    points = sort_series(series)
    sampled = carry_forward_values(benchmark_series(benchmark), [p.date for p in points])
    sampled_dates = {p.date for p in sampled}
    return [p for p in points if p.date in sampled_dates], sampled


def benchmark_returns_for(
    returns: List[ReturnDataPoint],
    series: Iterable[PriceDataPoint],
    benchmark: Iterable[BenchmarkData]
) -> Tuple[List[ReturnDataPoint], List[ReturnDataPoint]]:
    """
    Portfolio and benchmark returns on common dates.

    Returns:
        Tuple of equally long return series, chronologically aligned
    """
    _, bench_points = align_benchmark_series(series, benchmark)
    return align_returns_by_date(returns, calculate_returns(bench_points))


def excess_returns(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
) -> np.ndarray:
    r, b = paired_values(returns, benchmark_returns)
    return r - b


def calculate_correlation(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
) -> float:
    """
    Pearson correlation of aligned return series.

    Returns:
        Correlation in [-1, 1]; 0 if empty or either side has zero dispersion
    """
    r, b = paired_values(returns, benchmark_returns)
    if len(r) < 2:
        return 0.0

    std_r = float(np.std(r))
    std_b = float(np.std(b))
    if std_r == 0 or std_b == 0:
        return 0.0

    cov = float(np.mean((r - r.mean()) * (b - b.mean())))
    return max(-1.0, min(1.0, cov / (std_r * std_b)))


def calculate_tracking_error(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    data_source: Union[DataSource, str] = DataSource.DAILY,
    annualize: bool = False
) -> float:
    """
    Standard deviation of excess returns (portfolio - benchmark).

    Args:
        returns: Portfolio returns
        benchmark_returns: Aligned benchmark returns
        data_source: Sampling frequency, used only when annualizing
        annualize: Scale by √ppy

    Returns:
        Tracking error (sample std); 0 for fewer than 2 aligned periods
    """
    te = sample_std(excess_returns(returns, benchmark_returns))
    if annualize:
        te *= math.sqrt(as_data_source(data_source).periods_per_year)
    return te


def _capture(returns: List[ReturnDataPoint], benchmark_returns: List[ReturnDataPoint], up: bool) -> float:
    r, b = paired_values(returns, benchmark_returns)
    mask = b > 0 if up else b < 0
    if not mask.any():
        return 0.0

    bench_mean = float(np.mean(b[mask]))
    return float(np.mean(r[mask])) / bench_mean * 100


def calculate_up_market_capture(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
) -> float:
    """
    Average portfolio return over average benchmark return, in benchmark-up periods.

    Returns:
        Capture in percent (100 = moves one-for-one with the benchmark); 0 if no up periods
    """
    return _capture(returns, benchmark_returns, up=True)


def calculate_down_market_capture(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
) -> float:
    """Same as up capture, over benchmark-down periods. Lower is better."""
    return _capture(returns, benchmark_returns, up=False)


def calculate_information_ratio(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    tracking_error: float
) -> float:
    """
    Mean excess return per unit of tracking error.

    Returns:
        Information ratio; 0 if tracking error is 0 or there are no periods
    """
    excess = excess_returns(returns, benchmark_returns)
    if excess.size == 0 or tracking_error == 0:
        return 0.0
    return float(np.mean(excess)) / tracking_error


def calculate_cumulative_outperformance(
    series: Iterable[PriceDataPoint],
    benchmark: Iterable[BenchmarkData]
) -> float:
    """
    Portfolio total return minus benchmark total return over the same dates.

    Returns:
        Difference as decimal; 0 with fewer than 2 common dates
    """
    portfolio, bench = align_benchmark_series(series, benchmark)
    if len(portfolio) < 2:
        return 0.0
    return calculate_total_return(portfolio) - calculate_total_return(bench)


def calculate_yearly_comparison(
    series: Iterable[PriceDataPoint],
    benchmark: Iterable[BenchmarkData]
) -> List[YearlyComparison]:
    """
    Calendar-year returns of portfolio and benchmark side by side.

    Only years with returns on both sides are reported.

    Returns:
        YearlyComparison list ascending by year
    """
    portfolio, bench = align_benchmark_series(series, benchmark)
    by_year_p = returns_by_period(calculate_returns(portfolio), '%Y')
    by_year_b = returns_by_period(calculate_returns(bench), '%Y')

    comparison = []
    for year in sorted(set(by_year_p) & set(by_year_b)):
        p_ret = by_year_p[year]
        b_ret = by_year_b[year]
        comparison.append(YearlyComparison(
            year=int(year),
            portfolio_return=p_ret,
            benchmark_return=b_ret,
            outperformance=p_ret - b_ret
        ))
    return comparison


def calculate_benchmark_comparisons(
    returns: List[ReturnDataPoint],
    series: List[PriceDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    benchmark: List[BenchmarkData],
    data_source: Union[DataSource, str]
) -> BenchmarkComparisons:
    """
    Compose all benchmark comparisons for one analytics run.

    Args:
        returns: Portfolio returns
        series: Portfolio value series
        benchmark_returns: Benchmark returns (paired with `returns` by date)
        benchmark: Raw benchmark records
        data_source: Sampling frequency

    Returns:
        BenchmarkComparisons (tracking error per period, not annualized)
    """
    returns, benchmark_returns = align_returns_by_date(returns, benchmark_returns)
    tracking_error = calculate_tracking_error(returns, benchmark_returns, data_source)

    return BenchmarkComparisons(
        cumulative_outperformance=calculate_cumulative_outperformance(series, benchmark),
        tracking_error=tracking_error,
        market_capture=MarketCapture(
            up_capture=calculate_up_market_capture(returns, benchmark_returns),
            down_capture=calculate_down_market_capture(returns, benchmark_returns)
        ),
        information_ratio=calculate_information_ratio(returns, benchmark_returns, tracking_error),
        correlation=calculate_correlation(returns, benchmark_returns),
        yearly_comparison=calculate_yearly_comparison(series, benchmark)
    )
