"""
Drawdown and recovery calculation utilities.
Pure functions for maximum drawdown analysis of a value series.
"""

from typing import Iterable, List, Optional

import numpy as np

from analysis.models import PriceDataPoint, DrawdownPeriod
from analysis.guardrails import sort_series


def calculate_max_drawdown(series: Iterable[PriceDataPoint]) -> float:
    """
    Largest peak-to-trough decline of a value series.

    Single forward pass tracking the running peak:
    drawdown_t = (peak_t - V_t) / peak_t

    Args:
        series: Value points (sorted by date before use)

    Returns:
        Maximum drawdown as a positive decimal in [0, 1] (0.25 = 25% decline).
        Points under a zero peak are skipped.
    """
    points = sort_series(series)
    if not points:
        return 0.0

    peak = points[0].value
    max_drawdown = 0.0

    for point in points:
        if point.value > peak:
            peak = point.value
        if peak <= 0:
            continue
        drawdown = (peak - point.value) / peak
        if drawdown > max_drawdown:
            max_drawdown = drawdown

    return float(min(max_drawdown, 1.0))


def drawdown_series(series: Iterable[PriceDataPoint]) -> List[PriceDataPoint]:
    """
    Drawdown from the running peak at every point (0 at new highs).

    Returns:
        One point per input point; values are positive decimals
    """
    points = sort_series(series)
    if not points:
        return []

    values = np.array([p.value for p in points], dtype=float)
    running_max = np.maximum.accumulate(values)

    drawdowns = np.zeros_like(values)
    positive = running_max > 0
    drawdowns[positive] = (running_max[positive] - values[positive]) / running_max[positive]
    drawdowns = np.clip(drawdowns, 0.0, 1.0)

    return [PriceDataPoint(date=p.date, value=float(dd)) for p, dd in zip(points, drawdowns)]


def drawdown_stats(series: Iterable[PriceDataPoint]) -> Optional[DrawdownPeriod]:
    """
    Locate the peak, trough and recovery of the maximum drawdown.

    Args:
        series: Value points (sorted by date before use)

    Returns:
        DrawdownPeriod, or None when there is no decline at all
        - peak_date: Date of the peak before the max drawdown
        - trough_date: Date of the lowest point
        - recovery_date: First date the value exceeds the peak again (None if never)
        - drawdown_periods / recovery_periods: Number of points between them
    """
    points = sort_series(series)
    dd = drawdown_series(points)
    if not dd:
        return None

    depths = np.array([p.value for p in dd])
    trough_idx = int(np.argmax(depths))
    if depths[trough_idx] <= 0:
        return None

    # Peak is the first point reaching the running maximum before the trough
    values = np.array([p.value for p in points])
    peak_idx = int(np.argmax(values[:trough_idx + 1]))
    peak_value = values[peak_idx]

    recovery_idx = None
    for i in range(trough_idx + 1, len(values)):
        if values[i] > peak_value:
            recovery_idx = i
            break

    return DrawdownPeriod(
        max_drawdown=float(depths[trough_idx]),
        peak_date=points[peak_idx].date,
        trough_date=points[trough_idx].date,
        recovery_date=points[recovery_idx].date if recovery_idx is not None else None,
        drawdown_periods=trough_idx - peak_idx,
        recovery_periods=(recovery_idx - trough_idx) if recovery_idx is not None else None
    )
