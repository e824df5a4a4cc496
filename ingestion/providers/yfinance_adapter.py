"""
yfinance adapter - fetch historical and latest prices from Yahoo Finance.
Network IO allowed here, but minimal business logic.
"""

import logging
import math
from datetime import date, timedelta
from typing import Dict, Any, List

import yfinance as yf
import pandas as pd

logger = logging.getLogger(__name__)


class YFinanceError(Exception):
    """Raised when yfinance operations fail."""
    pass


def fetch_prices_window(ticker: str, start: date, end: date) -> List[Dict[str, Any]]:
    """
    Fetch daily OHLCV data for a ticker within a date window.
    Returns raw data in provider format - no normalization.

    Args:
        ticker: Ticker symbol (e.g., 'AAPL', 'SPY')
        start: Start date (inclusive)
        end: End date (inclusive)

    Returns:
        List of raw price dictionaries in yfinance format

    Raises:
        YFinanceError: If fetch fails or validation fails
    """
    _validate_date_range(start, end)
    _validate_ticker(ticker)

    try:
        # yfinance uses exclusive end dates, so add 1 day
        yf_end = end + timedelta(days=1)

        data = yf.download(
            ticker,
            start=start.isoformat(),
            end=yf_end.isoformat(),
            progress=False,
            auto_adjust=False
        )
    except Exception as e:
        raise YFinanceError(f"Failed to fetch prices for {ticker}: {str(e)}") from e

    if data is None or len(data) == 0:
        logger.info(f"No price rows returned for {ticker} ({start} to {end})")
        return []

    # Handle multi-level columns (when yfinance returns ticker-specific columns)
    if isinstance(data.columns, pd.MultiIndex):
        data.columns = data.columns.get_level_values(0)

    # Keep yfinance field names - normalization happens later
    rows = []
    for date_idx, row in data.iterrows():
        row_dict = {'Date': date_idx.strftime('%Y-%m-%d')}

        for field in ['Open', 'High', 'Low', 'Close', 'Adj Close', 'Volume']:
            if field in data.columns and pd.notna(row[field]):
                row_dict[field] = float(row[field]) if field != 'Volume' else int(row[field])

        rows.append(row_dict)

    return rows


def fetch_current_prices(tickers: List[str]) -> List[Dict[str, Any]]:
    """
    Fetch the latest traded price for a small batch of tickers.

    Tickers without a usable quote are left out of the result rather
    than failing the batch.

    Args:
        tickers: Ticker symbols (callers send chunks of a few symbols)

    Returns:
        List of raw quote dicts: {'Ticker': ..., 'Price': ...}

    Raises:
        YFinanceError: If the provider call fails
    """
    for ticker in tickers:
        _validate_ticker(ticker)

    quotes = []
    try:
        for ticker in tickers:
            info = yf.Ticker(ticker).fast_info
            price = getattr(info, 'last_price', None)
            if price is None or not math.isfinite(float(price)) or float(price) <= 0:
                logger.warning(f"No current price available for {ticker}")
                continue
            quotes.append({'Ticker': ticker, 'Price': float(price)})
    except Exception as e:
        raise YFinanceError(f"Failed to fetch current prices for {tickers}: {str(e)}") from e

    return quotes


def _validate_date_range(start: date, end: date) -> None:
    """
    Validate date range parameters.

    Args:
        start: Start date
        end: End date

    Raises:
        YFinanceError: If validation fails
    """
    if start > end:
        raise YFinanceError(f"start date ({start}) must be <= end date ({end})")

    # Don't allow future dates
    today = date.today()
    if start > today or end > today:
        raise YFinanceError("Future dates not allowed for historical data")


def _validate_ticker(ticker: str) -> None:
    """
    Basic ticker validation.

    Args:
        ticker: Ticker symbol

    Raises:
        YFinanceError: If ticker is invalid
    """
    if not ticker or not isinstance(ticker, str):
        raise YFinanceError("Ticker must be non-empty string")

    if len(ticker) > 12:
        raise YFinanceError("Ticker too long (max 12 characters)")

    # Alphanumeric plus common ticker chars (BRK.B, BTC-USD, ^GSPC)
    allowed_chars = set('ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-^=')
    if not set(ticker.upper()).issubset(allowed_chars):
        raise YFinanceError(f"Ticker contains invalid characters: {ticker}")
