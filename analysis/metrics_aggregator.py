"""
Metrics aggregator - composes all portfolio calculations into an AnalyticsResult.
Pure function combining risk, performance, benchmark and allocation engines.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Sequence, Union

from analysis.models import (
    AnalyticsMetadata,
    AnalyticsResult,
    Asset,
    BenchmarkData,
    DataSource,
    PriceDataPoint,
    Transaction,
    as_data_source,
)
from analysis.guardrails import (
    check_data_sufficiency,
    sort_series,
    validate_numeric_outputs,
)
from analysis.calculations.returns import calculate_returns
from analysis.calculations.risk import calculate_risk_metrics
from analysis.calculations.performance import calculate_performance_metrics
from analysis.calculations.benchmark import (
    benchmark_returns_for,
    calculate_benchmark_comparisons,
)
from analysis.calculations.allocation import calculate_asset_allocation, count_asset_types

logger = logging.getLogger(__name__)


def compose_analytics(
    series: Sequence[PriceDataPoint],
    transactions: Sequence[Transaction],
    assets: Sequence[Asset],
    benchmark: Sequence[BenchmarkData],
    data_source: Union[DataSource, str],
    risk_free_rate: float,
    as_of: Optional[date] = None,
    benchmark_ticker: Optional[str] = None,
    notes: Optional[List[str]] = None,
    calculated_at: Optional[datetime] = None
) -> AnalyticsResult:
    """
    Compose every analytics engine into one result.

    Benchmark returns are aligned to the portfolio's return dates (benchmark
    close carried forward onto each portfolio date) before beta, alpha,
    correlation and capture ratios are computed.

    Args:
        series: Portfolio value series
        transactions: All portfolio transactions
        assets: Portfolio assets (traded assets carry their price on as_of)
        benchmark: Benchmark OHLCV records (may be empty)
        data_source: Sampling frequency of `series`
        risk_free_rate: Annualized risk-free rate
        as_of: Reference date for YTD and allocation (default: today)
        benchmark_ticker: Ticker recorded in metadata
        notes: Extra data-quality notes gathered by the caller
        calculated_at: Timestamp for metadata (default: now)

    Returns:
        AnalyticsResult

    Raises:
        InputShapeError: If any input is malformed
        DataQualityError: If a computed statistic is not finite
    """
    source = as_data_source(data_source)
    points = sort_series(series)
    returns = calculate_returns(points)

    _, aligned_benchmark = benchmark_returns_for(returns, points, benchmark)

    risk = calculate_risk_metrics(
        returns, points, aligned_benchmark, assets, source, risk_free_rate
    )

    performance = calculate_performance_metrics(
        returns=returns,
        series=points,
        transactions=transactions,
        benchmark_returns=aligned_benchmark,
        data_source=source,
        beta=risk.beta,
        risk_free_rate=risk_free_rate,
        as_of=as_of
    )

    comparisons = calculate_benchmark_comparisons(
        returns, points, aligned_benchmark, list(benchmark), source
    )

    data_quality_notes = check_data_sufficiency(points, returns, aligned_benchmark, source)
    data_quality_notes.extend(notes or [])

    metadata = AnalyticsMetadata(
        calculated_at=calculated_at or datetime.now(),
        data_points=len(points),
        data_source=source,
        date_range={
            'start': points[0].date if points else None,
            'end': points[-1].date if points else None
        },
        asset_count=len(assets),
        asset_types=count_asset_types(assets),
        benchmark_ticker=benchmark_ticker,
        data_quality_notes=data_quality_notes
    )

    result = AnalyticsResult(
        risk_metrics=risk,
        performance_metrics=performance,
        benchmark_comparisons=comparisons,
        asset_allocation=calculate_asset_allocation(assets, as_of),
        metadata=metadata
    )

    validate_numeric_outputs(result.to_dict())

    for note in data_quality_notes:
        logger.info(f"Data quality: {note}")

    return result
