"""
Orchestrated analysis job - SQLite to AnalyticsResult pipeline.
Reads one consistent view of the stores, calls the pure engines, caches the result.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv

from analysis.models import (
    AnalyticsResult,
    DataSource,
    PriceDataPoint,
    as_data_source,
)
from analysis.guardrails import check_price_freshness
from analysis.metrics_aggregator import compose_analytics
from analysis.calculations.valuation import (
    live_prices_for,
    price_assets_as_of,
    reconstruct_value_series,
    value_at_date,
)
from storage.readers import (
    get_portfolio,
    list_portfolio_symbols,
    load_assets,
    load_benchmark,
    load_current_quotes,
    load_price_history,
    load_snapshots,
)

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Snapshot count from which weekly data is preferred when no source is requested
WEEKLY_SNAPSHOT_THRESHOLD = 52


class PortfolioNotFoundError(Exception):
    """Raised when a portfolio id is not in the store."""
    pass


class AnalyticsCache:
    """
    Last computed result per (portfolio_id, as_of).

    Storing a key again replaces the previous result.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, date], AnalyticsResult] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[str, date]) -> bool:
        return key in self._entries

    def get(self, portfolio_id: str, as_of: date) -> Optional[AnalyticsResult]:
        return self._entries.get((portfolio_id, as_of))

    def put(self, portfolio_id: str, as_of: date, result: AnalyticsResult) -> None:
        self._entries[(portfolio_id, as_of)] = result

    def invalidate(self, portfolio_id: str) -> int:
        """Drop every entry of a portfolio. Returns the number dropped."""
        keys = [key for key in self._entries if key[0] == portfolio_id]
        for key in keys:
            del self._entries[key]
        return len(keys)


@contextmanager
def _read_snapshot(conn: sqlite3.Connection):
    """Hold one read transaction so every store is read at the same point."""
    if conn.in_transaction:
        yield conn
        return

    conn.execute("BEGIN")
    try:
        yield conn
    finally:
        conn.commit()


def select_data_source(requested: Optional[Union[DataSource, str]], snapshot_count: int) -> DataSource:
    """
    Resolve the sampling frequency.

    Args:
        requested: 'daily', 'weekly' or None
        snapshot_count: Stored weekly snapshots for the portfolio

    Returns:
        The requested source, or weekly when enough snapshots exist
    """
    if requested is not None:
        return as_data_source(requested)
    if snapshot_count >= WEEKLY_SNAPSHOT_THRESHOLD:
        return DataSource.WEEKLY
    return DataSource.DAILY


def with_as_of_point(series: List[PriceDataPoint], as_of: date, as_of_value: float) -> List[PriceDataPoint]:
    """Drop points after as_of and set the as_of point to the value on that date."""
    points = [p for p in series if p.date < as_of]
    points.append(PriceDataPoint(date=as_of, value=as_of_value))
    return points


def compute_analytics(
    conn: sqlite3.Connection,
    portfolio_id: str,
    data_source: Optional[Union[DataSource, str]] = None,
    as_of: Optional[date] = None,
    risk_free_rate: Optional[float] = None,
    benchmark_ticker: Optional[str] = None,
    cache: Optional[AnalyticsCache] = None,
    refresh: bool = False
) -> AnalyticsResult:
    """
    Compute portfolio analytics from the stores.

    Value series:
    - daily: reconstructed day by day from transactions and closes
    - weekly: stored snapshots, or a 7-day reconstruction when none exist
    - None: weekly once 52 snapshots exist, daily otherwise
    The as_of point uses current quotes when as_of is today (or the quote was
    fetched on as_of); a past as_of is valued at the last stored close.

    Args:
        conn: SQLite database connection
        portfolio_id: Portfolio to analyze
        data_source: 'daily', 'weekly' or None
        as_of: Analysis date (default: today)
        risk_free_rate: Annual rate (default: RISK_FREE_RATE or 0.03)
        benchmark_ticker: Benchmark symbol (default: BENCHMARK_TICKER or SPY)
        cache: Optional result cache keyed by (portfolio_id, as_of)
        refresh: Recompute even if the cache holds a result

    Returns:
        AnalyticsResult

    Raises:
        PortfolioNotFoundError: If the portfolio does not exist
        InputShapeError: If stored data is malformed
    """
    as_of = as_of or date.today()

    if cache is not None and not refresh:
        cached = cache.get(portfolio_id, as_of)
        if cached is not None:
            logger.debug(f"Analytics cache hit for {portfolio_id} as of {as_of}")
            return cached

    if risk_free_rate is None:
        risk_free_rate = float(os.getenv('RISK_FREE_RATE', '0.03'))
    benchmark_ticker = benchmark_ticker or os.getenv('BENCHMARK_TICKER', 'SPY')

    with _read_snapshot(conn):
        if get_portfolio(conn, portfolio_id) is None:
            raise PortfolioNotFoundError(f"Portfolio {portfolio_id} not found")

        assets = load_assets(conn, portfolio_id)
        symbols = list_portfolio_symbols(conn, portfolio_id)
        price_history = load_price_history(conn, symbols, end_date=as_of)
        quotes = load_current_quotes(conn, symbols)
        snapshots = [p for p in load_snapshots(conn, portfolio_id) if p.date <= as_of]
        benchmark = load_benchmark(conn, benchmark_ticker, end_date=as_of)

    live_prices = live_prices_for(quotes, as_of)
    assets = price_assets_as_of(assets, price_history, live_prices, as_of)

    source = select_data_source(data_source, len(snapshots))
    notes: List[str] = []

    if not assets:
        notes.append("Portfolio has no assets")
        series: List[PriceDataPoint] = []
    elif source is DataSource.WEEKLY and snapshots:
        as_of_value = value_at_date(assets, price_history, live_prices, on=as_of, as_of=as_of)
        series = with_as_of_point(snapshots, as_of, as_of_value)
    else:
        step_days = 7 if source is DataSource.WEEKLY else 1
        series = reconstruct_value_series(assets, price_history, live_prices, as_of, step_days)

    if not benchmark:
        notes.append(f"No benchmark data stored for {benchmark_ticker}: benchmark metrics are zero")

    notes.extend(check_price_freshness(price_history, as_of))

    transactions = [txn for asset in assets for txn in asset.transactions]

    result = compose_analytics(
        series=series,
        transactions=transactions,
        assets=assets,
        benchmark=benchmark,
        data_source=source,
        risk_free_rate=risk_free_rate,
        as_of=as_of,
        benchmark_ticker=benchmark_ticker,
        notes=notes
    )

    logger.info(
        f"Analytics for {portfolio_id} as of {as_of}: {source.value}, "
        f"{len(series)} points, {len(assets)} assets"
    )

    if cache is not None:
        cache.put(portfolio_id, as_of, result)

    return result
