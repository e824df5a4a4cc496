"""
Volatility calculation utilities.
Pure functions for annualized dispersion of period returns.
"""

import math
from typing import List, Union

import numpy as np

from analysis.models import ReturnDataPoint, DataSource, as_data_source
from analysis.guardrails import validate_return_series


def return_values(returns: List[ReturnDataPoint]) -> np.ndarray:
    """Return values as a float array, in series order. Raises InputShapeError on malformed points."""
    validate_return_series(returns)
    return np.array([r.return_value for r in returns], dtype=float)


def sample_std(values: np.ndarray) -> float:
    """Sample standard deviation (ddof=1); 0 with fewer than 2 values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def calculate_volatility(
    returns: List[ReturnDataPoint],
    data_source: Union[DataSource, str] = DataSource.DAILY
) -> float:
    """
    Annualized volatility of a return series.

    Formula: σ = std(returns, ddof=1) × √periods_per_year
    (252 for daily data, 52 for weekly)

    Args:
        returns: Period returns
        data_source: Sampling frequency used to annualize

    Returns:
        Annualized volatility as decimal (0.25 = 25%); 0 for empty input
    """
    source = as_data_source(data_source)
    period_vol = sample_std(return_values(returns))
    return period_vol * math.sqrt(source.periods_per_year)


def calculate_downside_deviation(
    returns: List[ReturnDataPoint],
    data_source: Union[DataSource, str] = DataSource.DAILY,
    target: float = 0.0
) -> float:
    """
    Annualized downside deviation below a target return.

    Formula: √(Σ min(r - target, 0)² / n) × √periods_per_year

    Args:
        returns: Period returns
        data_source: Sampling frequency used to annualize
        target: Minimum acceptable return per period

    Returns:
        Annualized downside deviation; 0 for empty input
    """
    source = as_data_source(data_source)
    values = return_values(returns)
    if values.size == 0:
        return 0.0

    shortfall = np.minimum(values - target, 0.0)
    downside = math.sqrt(float(np.mean(shortfall ** 2)))
    return downside * math.sqrt(source.periods_per_year)
