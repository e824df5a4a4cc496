"""
Returns calculation utilities.
Pure functions converting value series into period returns and compounding them.
"""

from datetime import date
from typing import List, Dict, Tuple, Iterable

import numpy as np

from analysis.models import PriceDataPoint, ReturnDataPoint
from analysis.guardrails import InputShapeError, sort_series, validate_return_series


class ReturnsError(InputShapeError):
    """Raised when returns input is malformed."""
    pass


def calculate_returns(series: Iterable[PriceDataPoint]) -> List[ReturnDataPoint]:
    """
    Convert a value series into period-over-period returns.

    Formula: r_i = (V_i - V_{i-1}) / V_{i-1}

    Args:
        series: Value points (sorted by date before use)

    Returns:
        List of n-1 returns, each dated at the later point.
        Empty if fewer than 2 points.

    Example:
        values [100, 0, 50] -> returns [-1.0, 0.0]
        The step out of a zero value is defined as 0 so downstream
        alignment keeps one return per step.
    """
    points = sort_series(series)
    if len(points) < 2:
        return []

    returns = []
    for prev, curr in zip(points, points[1:]):
        if prev.value == 0:
            return_value = 0.0
        else:
            return_value = (curr.value - prev.value) / prev.value
        returns.append(ReturnDataPoint(date=curr.date, return_value=float(return_value)))

    return returns


def compound_return(return_values: Iterable[float]) -> float:
    """
    Geometrically compound a sequence of period returns.

    Formula: (1 + r_1)(1 + r_2)...(1 + r_k) - 1
    """
    values = np.asarray(list(return_values), dtype=float)
    if values.size == 0:
        return 0.0
    return float(np.prod(1.0 + values) - 1.0)


def aggregate_returns(returns: List[ReturnDataPoint], window_size: int) -> List[ReturnDataPoint]:
    """
    Compound consecutive, non-overlapping chunks of returns.

    Used to turn daily returns into ~monthly buckets (21 trading days)
    or weekly returns into ~monthly buckets (4 weeks).

    Args:
        returns: Return series in chronological order
        window_size: Number of returns per chunk

    Returns:
        One return per chunk, dated at the chunk's last point.
        A trailing partial chunk is compounded as well.

    Raises:
        ReturnsError: If window_size is not a positive integer
    """
    if not isinstance(window_size, int) or window_size < 1:
        raise ReturnsError(f"window_size must be a positive integer, got {window_size!r}")

    aggregated = []
    for start in range(0, len(returns), window_size):
        chunk = returns[start:start + window_size]
        aggregated.append(ReturnDataPoint(
            date=chunk[-1].date,
            return_value=compound_return(r.return_value for r in chunk)
        ))

    return aggregated


def calculate_total_return(series: Iterable[PriceDataPoint]) -> float:
    """
    Total return over the whole value series.

    Formula: (V_last - V_first) / V_first

    Returns:
        Return as decimal (0.2 = 20%); 0 with fewer than 2 points or a zero start
    """
    points = sort_series(series)
    if len(points) < 2:
        return 0.0

    start_value = points[0].value
    end_value = points[-1].value
    if start_value == 0:
        return 0.0

    return float((end_value - start_value) / start_value)


def align_returns_by_date(
    returns: List[ReturnDataPoint],
    other: List[ReturnDataPoint]
) -> Tuple[List[ReturnDataPoint], List[ReturnDataPoint]]:
    """
    Keep only the returns whose dates appear in both series.

    Args:
        returns: First return series
        other: Second return series

    Returns:
        Tuple of equally long, chronologically aligned series
    """
    validate_return_series(returns)
    validate_return_series(other)
    other_by_date = {r.date: r for r in other}
    left = []
    right = []
    for r in sorted(returns, key=lambda x: x.date):
        match = other_by_date.get(r.date)
        if match is not None:
            left.append(r)
            right.append(match)
    return left, right


def carry_forward_values(
    series: Iterable[PriceDataPoint],
    dates: List[date]
) -> List[PriceDataPoint]:
    """
    Sample a value series on the given dates using the most recent value on or before each date.

    Dates before the first point are dropped rather than invented.
    """
    points = sort_series(series)
    sampled = []
    idx = -1
    for target in sorted(dates):
        while idx + 1 < len(points) and points[idx + 1].date <= target:
            idx += 1
        if idx >= 0:
            sampled.append(PriceDataPoint(date=target, value=points[idx].value))
    return sampled


def returns_by_period(returns: List[ReturnDataPoint], key_format: str) -> Dict[str, float]:
    """
    Compound returns grouped by a strftime key (e.g. '%Y-%m' for months).

    Returns:
        Ordered dictionary of period key -> compounded return, ascending
    """
    buckets: Dict[str, List[float]] = {}
    for r in sorted(returns, key=lambda x: x.date):
        buckets.setdefault(r.date.strftime(key_format), []).append(r.return_value)

    return {key: compound_return(values) for key, values in sorted(buckets.items())}
