"""
Performance metrics engine.
Pure functions for total, time-weighted, annualized, rolling and calendar returns.
"""

import bisect
import math
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from analysis.models import (
    BestWorstPeriods,
    DataSource,
    MonthlyReturn,
    PerformanceMetrics,
    PeriodReturn,
    PriceDataPoint,
    ReturnDataPoint,
    Transaction,
    TransactionType,
    as_data_source,
)
from analysis.guardrails import InputShapeError, sort_series, validate_transaction
from analysis.calculations.returns import (
    align_returns_by_date,
    calculate_returns,
    calculate_total_return,
    returns_by_period,
)
from analysis.calculations.volatility import return_values

ROLLING_WINDOWS_YEARS = (1, 3, 5)

# exp(700) is close to the largest finite float
MAX_LOG_GROWTH = 700.0


def transaction_cash_flow(txn: Transaction) -> float:
    """
    External cash flow caused by a transaction.

    Buy: +(quantity x price + fees). Sell: -(quantity x price - fees).
    Dividends never enter the value series, so they are not a flow.
    """
    fees = txn.fees or 0.0
    notional = (txn.quantity or 0.0) * (txn.price or 0.0)
    if txn.type is TransactionType.BUY:
        return notional + fees
    if txn.type is TransactionType.SELL:
        return -(notional - fees)
    return 0.0


def cash_flows_by_date(
    points: List[PriceDataPoint],
    transactions: Iterable[Transaction]
) -> Dict[date, float]:
    """
    Net cash flow per series date.

    Each flow lands on the first series date on or after the transaction day.
    Flows on or before the first point are already part of the starting value,
    and flows after the last point fall outside the series.
    """
    dates = [p.date for p in points]
    flows: Dict[date, float] = {}

    for txn in transactions:
        validate_transaction(txn)
        if txn.day <= dates[0]:
            continue
        idx = bisect.bisect_left(dates, txn.day)
        if idx >= len(dates):
            continue
        flows[dates[idx]] = flows.get(dates[idx], 0.0) + transaction_cash_flow(txn)

    return flows


def calculate_time_weighted_return(
    series: Iterable[PriceDataPoint],
    transactions: Iterable[Transaction]
) -> float:
    """
    Time-weighted return, neutralizing deposits and withdrawals.

    The series is split into sub-periods ending at each cash-flow date:
    r_k = (V_end - CF - V_start) / V_start, TWR = Π(1 + r_k) - 1

    Args:
        series: Portfolio value series
        transactions: All portfolio transactions

    Returns:
        TWR as decimal; total return when there are no transactions.
        Sub-periods starting from a non-positive value are skipped.
    """
    points = sort_series(series)
    if len(points) < 2:
        return 0.0

    txns = list(transactions)
    if not txns:
        return calculate_total_return(points)

    flows = cash_flows_by_date(points, txns)

    growth = 1.0
    start_value = points[0].value
    last_idx = len(points) - 1

    for i, point in enumerate(points[1:], start=1):
        if point.date not in flows and i != last_idx:
            continue

        flow = flows.get(point.date, 0.0)
        if start_value > 0:
            growth *= 1.0 + (point.value - flow - start_value) / start_value
        start_value = point.value

    return float(growth - 1.0)


def calculate_annualized_return(
    series: Iterable[PriceDataPoint],
    data_source: Union[DataSource, str] = DataSource.DAILY
) -> float:
    """
    Geometric annualization of the total return.

    Formula: (1 + TR)^(ppy / (n - 1)) - 1, with n the number of points

    Returns:
        Annualized return; 0 with fewer than 2 points, -1 if the value was wiped out
    """
    source = as_data_source(data_source)
    points = sort_series(series)
    n = len(points)
    if n < 2:
        return 0.0

    growth = 1.0 + calculate_total_return(points)
    if growth <= 0:
        return -1.0

    log_growth = math.log(growth) * source.periods_per_year / (n - 1)
    return float(math.exp(min(log_growth, MAX_LOG_GROWTH)) - 1.0)


def calculate_rolling_returns(
    series: Iterable[PriceDataPoint],
    data_source: Union[DataSource, str] = DataSource.DAILY
) -> Dict[str, float]:
    """
    Trailing 1, 3 and 5 year total returns.

    Each window covers the last N x ppy periods, or the whole series when
    it is shorter.

    Returns:
        Dictionary with keys '1Y', '3Y', '5Y'
    """
    source = as_data_source(data_source)
    points = sort_series(series)

    rolling = {}
    for years in ROLLING_WINDOWS_YEARS:
        periods = years * source.periods_per_year
        rolling[f"{years}Y"] = calculate_total_return(points[-(periods + 1):])
    return rolling


def calculate_monthly_returns(series: Iterable[PriceDataPoint]) -> List[MonthlyReturn]:
    """
    Calendar-month returns, ascending.

    Each month compounds the period returns dated in that month, so the
    step from the last point of one month into the next counts for the later month.
    """
    returns = calculate_returns(series)
    return [
        MonthlyReturn(month=month, return_value=value)
        for month, value in returns_by_period(returns, '%Y-%m').items()
    ]


def calculate_ytd_return(series: Iterable[PriceDataPoint], as_of: Optional[date] = None) -> float:
    """
    Total return of the points dated from January 1 of the as-of year onward.

    Args:
        series: Portfolio value series
        as_of: Reference date (default: today); later points are ignored

    Returns:
        YTD return; 0 with fewer than 2 points in the year
    """
    as_of = as_of or date.today()
    year_start = date(as_of.year, 1, 1)
    points = [p for p in sort_series(series) if year_start <= p.date <= as_of]
    return calculate_total_return(points)


def _window_returns(returns: List[ReturnDataPoint], window: int) -> np.ndarray:
    growth = 1.0 + return_values(returns)
    windows = np.lib.stride_tricks.sliding_window_view(growth, window)
    return windows.prod(axis=1) - 1.0


def _find_period(returns: List[ReturnDataPoint], window: int, best: bool) -> Optional[PeriodReturn]:
    if not isinstance(window, int) or window < 1:
        raise InputShapeError(f"window must be a positive integer, got {window!r}")
    if not returns:
        return None

    ordered = sorted(returns, key=lambda r: r.date)
    window = min(window, len(ordered))

    compounded = _window_returns(ordered, window)
    idx = int(np.argmax(compounded) if best else np.argmin(compounded))

    return PeriodReturn(
        start_date=ordered[idx].date,
        end_date=ordered[idx + window - 1].date,
        return_value=float(compounded[idx])
    )


def find_best_period(returns: List[ReturnDataPoint], window: int) -> Optional[PeriodReturn]:
    """
    Window of `window` consecutive returns with the highest compounded return.

    Returns:
        PeriodReturn (one window over everything if the series is shorter), None if empty
    """
    return _find_period(returns, window, best=True)


def find_worst_period(returns: List[ReturnDataPoint], window: int) -> Optional[PeriodReturn]:
    """Counterpart of find_best_period with the lowest compounded return."""
    return _find_period(returns, window, best=False)


def calculate_alpha(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    beta: float,
    risk_free_rate: float,
    data_source: Union[DataSource, str] = DataSource.DAILY
) -> float:
    """
    Jensen's alpha, annualized.

    Per period: α = mean(R_p) - (rf/ppy + β × (mean(R_b) - rf/ppy)), then × ppy.

    Returns:
        Annualized alpha; 0 if either series is empty
    """
    source = as_data_source(data_source)
    n = min(len(returns), len(benchmark_returns))
    if n == 0:
        return 0.0

    mean_r = float(np.mean(return_values(returns[:n])))
    mean_b = float(np.mean(return_values(benchmark_returns[:n])))
    rf = risk_free_rate / source.periods_per_year

    period_alpha = mean_r - (rf + beta * (mean_b - rf))
    return period_alpha * source.periods_per_year


def calculate_win_rate(returns: List[ReturnDataPoint]) -> float:
    """Percentage (0-100) of periods with a positive return."""
    if not returns:
        return 0.0
    wins = sum(1 for r in returns if r.return_value > 0)
    return wins / len(returns) * 100


def calculate_best_worst_periods(
    returns: List[ReturnDataPoint],
    data_source: Union[DataSource, str]
) -> BestWorstPeriods:
    source = as_data_source(data_source)
    return BestWorstPeriods(
        best_month=find_best_period(returns, source.month_window),
        worst_month=find_worst_period(returns, source.month_window),
        best_year=find_best_period(returns, source.year_window),
        worst_year=find_worst_period(returns, source.year_window)
    )


def calculate_performance_metrics(
    returns: List[ReturnDataPoint],
    series: List[PriceDataPoint],
    transactions: Sequence[Transaction],
    benchmark_returns: List[ReturnDataPoint],
    data_source: Union[DataSource, str],
    beta: float,
    risk_free_rate: float,
    as_of: Optional[date] = None
) -> PerformanceMetrics:
    """
    Compose all performance metrics for one analytics run.

    Args:
        returns: Portfolio returns
        series: Portfolio value series
        transactions: All portfolio transactions (for TWR)
        benchmark_returns: Benchmark returns (paired with `returns` by date)
        data_source: Sampling frequency
        beta: Beta from the risk engine
        risk_free_rate: Annualized risk-free rate
        as_of: Reference date for YTD

    Returns:
        PerformanceMetrics
    """
    source = as_data_source(data_source)
    paired_returns, paired_benchmark = align_returns_by_date(returns, benchmark_returns)

    return PerformanceMetrics(
        total_return=calculate_total_return(series),
        time_weighted_return=calculate_time_weighted_return(series, transactions),
        annualized_return=calculate_annualized_return(series, source),
        monthly_returns=calculate_monthly_returns(series),
        ytd_return=calculate_ytd_return(series, as_of),
        rolling_returns=calculate_rolling_returns(series, source),
        best_worst_periods=calculate_best_worst_periods(returns, source),
        alpha=calculate_alpha(paired_returns, paired_benchmark, beta, risk_free_rate, source),
        win_rate=calculate_win_rate(returns)
    )
