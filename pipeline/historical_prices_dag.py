"""
Historical prices DAG - incremental OHLCV refresh for portfolio and benchmark symbols.
Composes: Provider → Transform → Validate → Store → Track, once per symbol.

Each symbol resumes the day after its last stored close. A failing symbol is
logged and skipped; the others still refresh.
"""

import logging
import os
import sqlite3
from datetime import date, datetime, timedelta
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv

from ingestion.providers.yfinance_adapter import fetch_prices_window, YFinanceError
from ingestion.transforms.normalizers import normalize_prices
from ingestion.transforms.validators import validate_prices_row, ValidationError
from storage.loaders import upsert_prices
from storage.readers import get_last_price_date
from storage.run_registry import start_run, finish_run, RunStatus

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DAG_NAME = 'historical_prices'


class PipelineError(Exception):
    """Raised when pipeline execution fails."""
    pass


def default_start_date() -> date:
    """First date fetched for a symbol with no stored history."""
    return date.fromisoformat(os.getenv('HISTORICAL_DEFAULT_START', '2015-01-01'))


def next_start_date(conn: sqlite3.Connection, ticker: str, default_start: Optional[date] = None) -> date:
    """
    Day after the last stored close for a ticker, or the default start.

    Args:
        conn: SQLite connection
        ticker: Ticker symbol
        default_start: Start used when nothing is stored yet

    Returns:
        First date to fetch
    """
    last_date = get_last_price_date(conn, ticker)
    if last_date is None:
        return default_start or default_start_date()
    return last_date + timedelta(days=1)


def refresh_ticker(
    conn: sqlite3.Connection,
    ticker: str,
    start: date,
    end: date
) -> Dict[str, Any]:
    """
    Fetch, normalize, validate and store one ticker's window.

    Returns:
        Dictionary with rows_fetched, rows_stored, rows_inserted, validation_warnings

    Raises:
        YFinanceError: If the provider call fails
        ValueError, KeyError: If the provider payload is malformed
    """
    raw_data = fetch_prices_window(ticker=ticker, start=start, end=end)

    summary = {
        'ticker': ticker,
        'start_date': start,
        'end_date': end,
        'rows_fetched': len(raw_data),
        'rows_stored': 0,
        'rows_inserted': 0,
        'validation_warnings': 0
    }

    if not raw_data:
        return summary

    normalized = normalize_prices(
        raw_rows=raw_data,
        ticker=ticker,
        source='yfinance',
        ingested_at=datetime.now()
    )

    valid_rows = []
    for row in normalized:
        try:
            validate_prices_row(row)
            valid_rows.append(row)
        except ValidationError as e:
            summary['validation_warnings'] += 1
            logger.warning(f"Validation warning for {ticker} {row.get('date', 'unknown')}: {e}")

    inserted, _ = upsert_prices(conn, valid_rows)
    summary['rows_stored'] = len(valid_rows)
    summary['rows_inserted'] = inserted
    return summary


def run_historical_prices(
    conn: sqlite3.Connection,
    tickers: List[str],
    end_date: Optional[date] = None,
    default_start: Optional[date] = None
) -> Dict[str, Any]:
    """
    Run the incremental historical refresh for a list of tickers.

    Pipeline stages per ticker:
    1. Resume from last stored date + 1 (default start when nothing is stored)
    2. Fetch raw data from provider
    3. Normalize and validate each row
    4. Upsert valid rows (idempotent)

    Args:
        conn: SQLite database connection
        tickers: Symbols to refresh
        end_date: Last date to fetch (defaults to today)
        default_start: Start for symbols without history

    Returns:
        Dictionary with run results: per-ticker summaries, updated and failed tickers
    """
    end_date = end_date or date.today()
    unique_tickers = list(dict.fromkeys(tickers))

    run_id = start_run(conn, DAG_NAME)
    start_time = datetime.now()

    result = {
        'run_id': run_id,
        'status': 'running',
        'tickers': unique_tickers,
        'rows_fetched': 0,
        'rows_stored': 0,
        'updated_tickers': [],
        'skipped_tickers': [],
        'failed_tickers': [],
        'details': [],
        'error_message': None
    }

    try:
        for ticker in unique_tickers:
            start = next_start_date(conn, ticker, default_start)
            if start > end_date:
                logger.debug(f"{ticker} already up to date (last stored {start - timedelta(days=1)})")
                result['skipped_tickers'].append(ticker)
                continue

            try:
                summary = refresh_ticker(conn, ticker, start, end_date)
            except (YFinanceError, ValueError, KeyError) as e:
                logger.error(f"Historical refresh failed for {ticker}: {e}")
                result['failed_tickers'].append(ticker)
                continue

            result['details'].append(summary)
            result['rows_fetched'] += summary['rows_fetched']
            result['rows_stored'] += summary['rows_stored']
            if summary['rows_inserted'] > 0:
                result['updated_tickers'].append(ticker)

            logger.info(
                f"{ticker}: fetched {summary['rows_fetched']} rows from {start}, "
                f"stored {summary['rows_stored']}"
            )

        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.COMPLETED,
            rows_in=len(unique_tickers),
            rows_out=result['rows_stored']
        )
        result['status'] = 'completed'

    except Exception as e:
        logger.error(f"Historical prices run {run_id} failed: {e}")
        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.FAILED,
            rows_in=len(unique_tickers),
            rows_out=result['rows_stored'],
            error_message=str(e)
        )
        result['status'] = 'failed'
        result['error_message'] = str(e)

    result['duration_seconds'] = (datetime.now() - start_time).total_seconds()
    return result
