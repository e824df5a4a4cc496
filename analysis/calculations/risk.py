"""
Risk metrics engine.
Pure functions: beta, Value at Risk, Sharpe ratio, diversification, plus composition into RiskMetrics.
"""

import math
from typing import List, Sequence, Union

import numpy as np

from analysis.models import (
    Asset,
    DataSource,
    PriceDataPoint,
    ReturnDataPoint,
    RiskMetrics,
    TypeShare,
    ValueAtRisk,
    as_data_source,
)
from analysis.guardrails import validate_confidence
from analysis.calculations.returns import aggregate_returns, align_returns_by_date
from analysis.calculations.volatility import (
    calculate_volatility,
    calculate_downside_deviation,
    return_values,
    sample_std,
)
from analysis.calculations.drawdown import calculate_max_drawdown, drawdown_stats
from analysis.calculations.allocation import count_asset_types


def paired_values(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
):
    """
    Truncate two return series to their common length.

    Callers are expected to align by date first; this only guards
    against a length mismatch.
    """
    n = min(len(returns), len(benchmark_returns))
    return return_values(returns[:n]), return_values(benchmark_returns[:n])


def calculate_beta(
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint]
) -> float:
    """
    Sensitivity of portfolio returns to benchmark returns.

    Formula: β = Cov(R_p, R_b) / Var(R_b)  (sample estimators, ddof=1)

    Returns:
        Beta; 0 if either series is empty or benchmark variance is 0
    """
    r, b = paired_values(returns, benchmark_returns)
    if len(r) < 2:
        return 0.0

    var_b = float(np.var(b, ddof=1))
    if var_b == 0:
        return 0.0

    cov = float(np.cov(r, b, ddof=1)[0, 1])
    return cov / var_b


def calculate_var(returns: List[ReturnDataPoint], confidence: float = 0.95) -> float:
    """
    Historical Value at Risk for one period.

    Sorts returns ascending and reads the (1 - confidence) quantile by index
    ⌊(1 - confidence) × n⌋; the loss at that point is the VaR.

    Args:
        returns: Period returns
        confidence: Confidence level in (0, 1), e.g. 0.95

    Returns:
        Loss magnitude as a non-negative decimal (0.03 = 3% loss); 0 for empty input
    """
    validate_confidence(confidence)
    values = np.sort(return_values(returns))
    if values.size == 0:
        return 0.0

    index = min(int(math.floor((1 - confidence) * values.size)), values.size - 1)
    return max(0.0, -float(values[index]))


def calculate_sharpe_ratio(
    returns: List[ReturnDataPoint],
    risk_free_rate: float,
    data_source: Union[DataSource, str] = DataSource.DAILY
) -> float:
    """
    Annualized excess return per unit of volatility.

    Formula: (mean(r) - rf / ppy) / std(r) × √ppy

    Args:
        returns: Period returns
        risk_free_rate: Annualized risk-free rate (0.03 = 3%)
        data_source: Sampling frequency (ppy = 252 daily, 52 weekly)

    Returns:
        Sharpe ratio; 0 for empty input or zero dispersion
    """
    source = as_data_source(data_source)
    values = return_values(returns)
    std = sample_std(values)
    if values.size == 0 or std == 0:
        return 0.0

    excess = float(np.mean(values)) - risk_free_rate / source.periods_per_year
    return excess / std * math.sqrt(source.periods_per_year)


def calculate_asset_diversification(assets: Sequence[Asset]) -> List[TypeShare]:
    """
    Share of distinct assets per type, by count.

    Returns:
        TypeShare list summing to 100 across present types; empty for no assets
    """
    counts = count_asset_types(assets)
    total = sum(counts.values())
    if total == 0:
        return []

    return [
        TypeShare(type=asset_type, percentage=count / total * 100)
        for asset_type, count in counts.items()
    ]


def calculate_risk_metrics(
    returns: List[ReturnDataPoint],
    series: List[PriceDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    assets: Sequence[Asset],
    data_source: Union[DataSource, str],
    risk_free_rate: float,
    confidence: float = 0.95
) -> RiskMetrics:
    """
    Compose all risk metrics for one analytics run.

    Args:
        returns: Portfolio returns
        series: Portfolio value series (for drawdown)
        benchmark_returns: Benchmark returns (paired with `returns` by date)
        assets: Portfolio assets (for diversification)
        data_source: Sampling frequency
        risk_free_rate: Annualized risk-free rate
        confidence: VaR confidence level

    Returns:
        RiskMetrics
    """
    source = as_data_source(data_source)
    paired_returns, paired_benchmark = align_returns_by_date(returns, benchmark_returns)

    return RiskMetrics(
        volatility=calculate_volatility(returns, source),
        max_drawdown=calculate_max_drawdown(series),
        beta=calculate_beta(paired_returns, paired_benchmark),
        value_at_risk=ValueAtRisk(
            daily=calculate_var(returns, confidence),
            monthly=calculate_var(aggregate_returns(returns, source.month_window), confidence)
        ),
        sharpe_ratio=calculate_sharpe_ratio(returns, risk_free_rate, source),
        downside_deviation=calculate_downside_deviation(returns, source),
        asset_diversification=calculate_asset_diversification(assets),
        max_drawdown_period=drawdown_stats(series)
    )
