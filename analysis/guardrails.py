"""
Guardrails for the analytics engine - input shape validation and data sufficiency notes.

Two kinds of problems are kept apart:
- bad input shape (wrong types, missing quantities, NaN values) raises InputShapeError;
- insufficient data (empty series, single point, zero variance) is not an error.
  Engines return neutral zeros and the checks here only produce notes.
"""

import math
from datetime import date, datetime
from typing import Dict, Any, Iterable, List, Optional

from analysis.models import (
    PriceDataPoint,
    ReturnDataPoint,
    Transaction,
    TransactionType,
    TradedAsset,
    ValuedAsset,
    AssetType,
    BenchmarkData,
    DataSource,
)


class InputShapeError(ValueError):
    """Raised when engine input is malformed (as opposed to merely too short)."""
    pass


class DataQualityError(Exception):
    """Raised when a computed statistic is not a finite number."""
    pass


def _check_number(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InputShapeError(f"{name} must be numeric, got {type(value).__name__}")
    if not math.isfinite(value):
        raise InputShapeError(f"{name} must be finite, got {value}")


def _check_date(value: Any, name: str) -> None:
    # datetime subclasses date but does not compare with it
    if isinstance(value, datetime) or not isinstance(value, date):
        raise InputShapeError(f"{name} must be a date, got {type(value).__name__}")


def validate_price_series(series: Iterable[PriceDataPoint]) -> None:
    """
    Validate a value series element by element.

    Args:
        series: Iterable of PriceDataPoint

    Raises:
        InputShapeError: If an element is not a PriceDataPoint or carries bad fields
    """
    for i, point in enumerate(series):
        if not isinstance(point, PriceDataPoint):
            raise InputShapeError(f"series[{i}] must be PriceDataPoint, got {type(point).__name__}")
        _check_date(point.date, f"series[{i}].date")
        _check_number(point.value, f"series[{i}].value")


def validate_return_series(returns: Iterable[ReturnDataPoint]) -> None:
    for i, point in enumerate(returns):
        if not isinstance(point, ReturnDataPoint):
            raise InputShapeError(f"returns[{i}] must be ReturnDataPoint, got {type(point).__name__}")
        _check_date(point.date, f"returns[{i}].date")
        _check_number(point.return_value, f"returns[{i}].return_value")


def sort_series(series: Iterable[PriceDataPoint]) -> List[PriceDataPoint]:
    """
    Validate and sort a value series ascending by date.

    Duplicated dates keep the last occurrence, so a later correction wins.
    """
    points = list(series)
    validate_price_series(points)
    by_date = {}
    for point in points:
        by_date[point.date] = point
    return [by_date[d] for d in sorted(by_date)]


def validate_transaction(txn: Transaction) -> None:
    """
    Validate a single transaction.

    Raises:
        InputShapeError: If type is unknown, a buy/sell lacks quantity, or fees are negative
    """
    if not isinstance(txn, Transaction):
        raise InputShapeError(f"transaction must be Transaction, got {type(txn).__name__}")

    if not isinstance(txn.type, TransactionType):
        raise InputShapeError(f"transaction type must be TransactionType, got {txn.type!r}")

    if not isinstance(txn.date, (date, datetime)):
        raise InputShapeError(f"transaction date must be date or datetime, got {type(txn.date).__name__}")

    if txn.type in (TransactionType.BUY, TransactionType.SELL):
        if txn.quantity is None:
            raise InputShapeError(f"{txn.type.value} transaction for {txn.asset_id} requires quantity")
        _check_number(txn.quantity, 'quantity')

    if txn.price is not None:
        _check_number(txn.price, 'price')

    if txn.fees is not None:
        _check_number(txn.fees, 'fees')
        if txn.fees < 0:
            raise InputShapeError(f"fees must be non-negative, got {txn.fees}")


def validate_asset(asset: Any) -> None:
    """
    Validate an asset and all of its transactions.

    Raises:
        InputShapeError: If the asset is not one of the two asset variants
    """
    if not isinstance(asset, (TradedAsset, ValuedAsset)):
        raise InputShapeError(f"asset must be TradedAsset or ValuedAsset, got {type(asset).__name__}")

    if not isinstance(asset.type, AssetType):
        raise InputShapeError(f"asset type must be AssetType, got {asset.type!r}")

    if isinstance(asset, TradedAsset):
        if not asset.symbol or not isinstance(asset.symbol, str):
            raise InputShapeError(f"traded asset {asset.id} requires a symbol")
        if asset.current_price is not None:
            _check_number(asset.current_price, 'current_price')

    for txn in asset.transactions:
        validate_transaction(txn)
        if txn.asset_id != asset.id:
            raise InputShapeError(
                f"transaction belongs to asset {txn.asset_id}, not {asset.id}"
            )


def validate_benchmark(benchmark: Iterable[BenchmarkData]) -> None:
    for i, record in enumerate(benchmark):
        if not isinstance(record, BenchmarkData):
            raise InputShapeError(f"benchmark[{i}] must be BenchmarkData, got {type(record).__name__}")
        _check_date(record.date, f"benchmark[{i}].date")
        _check_number(record.close, f"benchmark[{i}].close")


def validate_confidence(confidence: float) -> None:
    _check_number(confidence, 'confidence')
    if not 0 < confidence < 1:
        raise InputShapeError(f"confidence must be in (0, 1), got {confidence}")


def check_data_sufficiency(
    series: List[PriceDataPoint],
    returns: List[ReturnDataPoint],
    benchmark_returns: List[ReturnDataPoint],
    data_source: DataSource
) -> List[str]:
    """
    Describe statistics that will fall back to neutral values.

    Args:
        series: Sorted portfolio value series
        returns: Portfolio return series
        benchmark_returns: Benchmark returns aligned to the portfolio
        data_source: Sampling frequency of the series

    Returns:
        List of human-readable notes (empty when data is sufficient)
    """
    notes = []

    if len(series) < 2:
        notes.append(f"Only {len(series)} value point(s): returns and risk metrics are zero")
        return notes

    if len(returns) < 2:
        notes.append("Fewer than 2 returns: volatility, Sharpe ratio and tracking error are zero")

    if not benchmark_returns:
        notes.append("No overlapping benchmark data: benchmark comparisons are zero")

    if len(returns) < data_source.year_window:
        notes.append(
            f"Less than one year of {data_source.value} data ({len(returns)} returns): "
            f"yearly best/worst periods cover the whole history"
        )

    return notes


def check_price_freshness(
    price_history: Dict[str, List[BenchmarkData]],
    as_of: date,
    max_price_age_days: int = 7
) -> List[str]:
    """
    Warn about symbols whose latest stored close is stale.

    Stale prices are carried forward by the valuation, so this never blocks computation.
    """
    warnings = []

    for ticker, records in sorted(price_history.items()):
        if not records:
            warnings.append(f"No historical prices stored for {ticker}")
            continue

        latest = max(r.date for r in records)
        age = (as_of - latest).days
        if age > max_price_age_days:
            warnings.append(f"Prices for {ticker} are {age} days old (latest: {latest})")

    return warnings


def validate_numeric_outputs(metrics: Dict[str, Any], path: str = '') -> None:
    """
    Walk a result dict and make sure every number is finite.

    Raises:
        DataQualityError: If NaN or infinite values are found
    """
    for key, value in metrics.items():
        item_path = f"{path}.{key}" if path else str(key)
        _check_output_value(value, item_path)


def _check_output_value(value: Any, path: str) -> None:
    if isinstance(value, dict):
        validate_numeric_outputs(value, path)
    elif isinstance(value, list):
        for i, item in enumerate(value):
            _check_output_value(item, f"{path}[{i}]")
    elif isinstance(value, float) and not math.isfinite(value):
        raise DataQualityError(f"Non-finite value found in {path}: {value}")
