"""
Normalizers for transforming provider data to canonical shape.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

from datetime import date, datetime
from typing import Dict, Any, List


def normalize_prices(
    raw_rows: List[Dict[str, Any]],
    *,
    ticker: str,
    source: str,
    ingested_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform provider-native price rows to canonical shape.

    Minimal normalization:
    - Date strings to date objects (required for schema)
    - Field name mapping (provider uses different names)
    - Missing open/high/low fall back to close (some indices only report close)
    - Deduplication by date (keep last to handle corrections)

    Args:
        raw_rows: List of provider-specific price dictionaries
        ticker: Ticker symbol
        source: Data provider name
        ingested_at: Pipeline processing timestamp

    Returns:
        List of canonical price dictionaries
    """
    if not raw_rows:
        return []

    seen_dates = {}

    for raw in raw_rows:
        date_str = raw.get('Date', '')
        if isinstance(date_str, str):
            row_date = date.fromisoformat(date_str)
        else:
            row_date = date_str

        close = float(raw.get('Close', 0))
        canonical = {
            'ticker': ticker,
            'date': row_date,
            'open': float(raw.get('Open', close)),
            'high': float(raw.get('High', close)),
            'low': float(raw.get('Low', close)),
            'close': close,
            'adj_close': float(raw['Adj Close']) if 'Adj Close' in raw else None,
            'volume': int(raw.get('Volume', 0)),
            'source': source,
            'as_of': row_date,  # For prices, as_of equals data date
            'ingested_at': ingested_at,
        }

        # Deduplication by primary key (ticker, date), keeps latest correction
        seen_dates[(ticker, row_date)] = canonical

    return list(seen_dates.values())


def normalize_current_prices(
    raw_quotes: List[Dict[str, Any]],
    *,
    source: str,
    updated_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform provider-native quotes to canonical current price rows.

    Args:
        raw_quotes: Quote dicts with 'Ticker' and 'Price'
        source: Data provider name
        updated_at: Fetch timestamp

    Returns:
        One row per ticker (last quote wins): ticker, price, updated_at, source
    """
    by_ticker = {}
    for raw in raw_quotes:
        ticker = raw['Ticker']
        by_ticker[ticker] = {
            'ticker': ticker,
            'price': float(raw['Price']),
            'updated_at': updated_at,
            'source': source,
        }
    return list(by_ticker.values())
