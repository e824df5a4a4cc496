"""
Database readers - read-side queries returning engine model objects.
Serves the asset/transaction, price, current price and snapshot stores.
"""

import sqlite3
from datetime import date, datetime
from typing import Dict, Any, Iterable, List, Optional, Tuple, Union

import pandas as pd

from analysis.models import (
    Asset,
    AssetType,
    BenchmarkData,
    PriceDataPoint,
    TradedAsset,
    Transaction,
    TransactionType,
    ValuedAsset,
)


def _parse_when(value: str) -> Union[date, datetime]:
    """Transactions keep either a day or a full timestamp."""
    if 'T' in value or ' ' in value:
        return datetime.fromisoformat(value)
    return date.fromisoformat(value)


def get_portfolio(conn: sqlite3.Connection, portfolio_id: str) -> Optional[Dict[str, Any]]:
    """
    Fetch portfolio metadata.

    Returns:
        Dict with id, name, created_at, or None if the portfolio does not exist
    """
    row = conn.execute(
        "SELECT id, name, created_at FROM portfolios WHERE id = ?", (portfolio_id,)
    ).fetchone()
    if row is None:
        return None
    return {'id': row[0], 'name': row[1], 'created_at': row[2]}


def list_portfolio_ids(conn: sqlite3.Connection) -> List[str]:
    return [row[0] for row in conn.execute("SELECT id FROM portfolios ORDER BY id")]


def load_transactions(conn: sqlite3.Connection, asset_ids: Iterable[str]) -> Dict[str, List[Transaction]]:
    """
    Load transactions for the given assets, ordered by date.

    Returns:
        Dictionary asset_id -> transactions
    """
    ids = list(asset_ids)
    by_asset: Dict[str, List[Transaction]] = {asset_id: [] for asset_id in ids}
    if not ids:
        return by_asset

    placeholders = ', '.join('?' for _ in ids)
    cursor = conn.execute(f"""
        SELECT asset_id, type, date, quantity, price, fees, notes
        FROM transactions
        WHERE asset_id IN ({placeholders})
        ORDER BY date ASC, id ASC
    """, ids)

    for asset_id, txn_type, when, quantity, price, fees, notes in cursor.fetchall():
        by_asset[asset_id].append(Transaction(
            asset_id=asset_id,
            type=TransactionType(txn_type),
            date=_parse_when(when),
            quantity=quantity,
            price=price,
            fees=fees,
            notes=notes
        ))

    return by_asset


def load_assets(conn: sqlite3.Connection, portfolio_id: str) -> List[Asset]:
    """
    Load the assets of a portfolio with their transactions.

    Assets with a symbol become TradedAsset, priced from the current_prices
    table (falling back to the price stored on the asset). Assets without a
    symbol become ValuedAsset.

    Args:
        conn: SQLite connection
        portfolio_id: Portfolio to load

    Returns:
        List of assets ordered by id
    """
    cursor = conn.execute("""
        SELECT a.id, a.symbol, a.name, a.type, COALESCE(cp.price, a.current_price)
        FROM assets a
        LEFT JOIN current_prices cp ON cp.ticker = a.symbol
        WHERE a.portfolio_id = ?
        ORDER BY a.id ASC
    """, (portfolio_id,))
    rows = cursor.fetchall()

    transactions = load_transactions(conn, [row[0] for row in rows])

    assets: List[Asset] = []
    for asset_id, symbol, name, asset_type, current_price in rows:
        txns = tuple(transactions[asset_id])
        if symbol:
            assets.append(TradedAsset(
                id=asset_id,
                symbol=symbol,
                type=AssetType(asset_type),
                transactions=txns,
                current_price=current_price,
                name=name
            ))
        else:
            assets.append(ValuedAsset(
                id=asset_id,
                type=AssetType(asset_type),
                transactions=txns,
                name=name
            ))

    return assets


def list_portfolio_symbols(conn: sqlite3.Connection, portfolio_id: Optional[str] = None) -> List[str]:
    """Distinct market symbols held by one portfolio, or by all portfolios."""
    if portfolio_id is None:
        cursor = conn.execute(
            "SELECT DISTINCT symbol FROM assets WHERE symbol IS NOT NULL AND symbol != '' ORDER BY symbol"
        )
    else:
        cursor = conn.execute("""
            SELECT DISTINCT symbol FROM assets
            WHERE portfolio_id = ? AND symbol IS NOT NULL AND symbol != ''
            ORDER BY symbol
        """, (portfolio_id,))
    return [row[0] for row in cursor.fetchall()]


def query_price_data(
    conn: sqlite3.Connection,
    tickers: List[str],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Query historical OHLCV rows for tickers.

    Args:
        conn: SQLite connection
        tickers: Tickers to query
        start_date: Optional lower bound (inclusive)
        end_date: Optional upper bound (inclusive)

    Returns:
        DataFrame ordered by ticker and date, with `date` as datetime.date
    """
    if not tickers:
        return pd.DataFrame(columns=['ticker', 'date', 'open', 'high', 'low', 'close', 'volume'])

    placeholders = ', '.join('?' for _ in tickers)
    base_query = f"""
        SELECT ticker, date, open, high, low, close, volume
        FROM prices
        WHERE ticker IN ({placeholders})
    """
    params: List[Any] = list(tickers)

    if start_date is not None:
        base_query += " AND date >= ?"
        params.append(start_date.isoformat())

    if end_date is not None:
        base_query += " AND date <= ?"
        params.append(end_date.isoformat())

    base_query += " ORDER BY ticker ASC, date ASC"

    df = pd.read_sql_query(base_query, conn, params=params)

    if not df.empty:
        df['date'] = pd.to_datetime(df['date']).dt.date

    return df


def _records_from_frame(df: pd.DataFrame) -> List[BenchmarkData]:
    return [
        BenchmarkData(
            date=row.date,
            ticker=row.ticker,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume)
        )
        for row in df.itertuples(index=False)
    ]


def load_price_history(
    conn: sqlite3.Connection,
    tickers: List[str],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> Dict[str, List[BenchmarkData]]:
    """
    Historical closes per ticker.

    Returns:
        Dictionary ticker -> ascending OHLCV records (empty list for unknown tickers)
    """
    df = query_price_data(conn, tickers, start_date, end_date)
    history: Dict[str, List[BenchmarkData]] = {ticker: [] for ticker in tickers}
    for ticker, group in df.groupby('ticker', sort=True):
        history[ticker] = _records_from_frame(group)
    return history


def load_benchmark(
    conn: sqlite3.Connection,
    ticker: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[BenchmarkData]:
    """Benchmark OHLCV records from the shared prices table."""
    return load_price_history(conn, [ticker], start_date, end_date)[ticker]


def load_current_quotes(
    conn: sqlite3.Connection,
    tickers: Optional[List[str]] = None
) -> Dict[str, Tuple[float, datetime]]:
    """
    Latest known price per ticker with the time it was fetched.

    Returns:
        Dictionary ticker -> (price, updated_at); tickers without a stored price are absent
    """
    if tickers is None:
        cursor = conn.execute("SELECT ticker, price, updated_at FROM current_prices")
    else:
        if not tickers:
            return {}
        placeholders = ', '.join('?' for _ in tickers)
        cursor = conn.execute(
            f"SELECT ticker, price, updated_at FROM current_prices WHERE ticker IN ({placeholders})",
            tickers
        )
    return {
        ticker: (float(price), datetime.fromisoformat(str(updated_at)))
        for ticker, price, updated_at in cursor.fetchall()
    }


def get_last_price_date(conn: sqlite3.Connection, ticker: str) -> Optional[date]:
    """Most recent stored historical date for a ticker, None if none stored."""
    row = conn.execute("SELECT MAX(date) FROM prices WHERE ticker = ?", (ticker,)).fetchone()
    if row is None or row[0] is None:
        return None
    return date.fromisoformat(str(row[0])[:10])


def load_snapshots(
    conn: sqlite3.Connection,
    portfolio_id: str,
    start_date: Optional[date] = None
) -> List[PriceDataPoint]:
    """Stored weekly snapshots of a portfolio, ascending."""
    query = "SELECT date, value FROM portfolio_snapshots WHERE portfolio_id = ?"
    params: List[Any] = [portfolio_id]
    if start_date is not None:
        query += " AND date >= ?"
        params.append(start_date.isoformat())
    query += " ORDER BY date ASC"

    return [
        PriceDataPoint(date=date.fromisoformat(str(when)[:10]), value=float(value))
        for when, value in conn.execute(query, params).fetchall()
    ]


def get_last_snapshot_date(conn: sqlite3.Connection, portfolio_id: str) -> Optional[date]:
    row = conn.execute(
        "SELECT MAX(date) FROM portfolio_snapshots WHERE portfolio_id = ?", (portfolio_id,)
    ).fetchone()
    if row is None or row[0] is None:
        return None
    return date.fromisoformat(str(row[0])[:10])


def list_portfolios_for_symbols(conn: sqlite3.Connection, symbols: List[str]) -> List[str]:
    """Portfolios holding at least one of the given symbols."""
    if not symbols:
        return []
    placeholders = ', '.join('?' for _ in symbols)
    cursor = conn.execute(f"""
        SELECT DISTINCT portfolio_id FROM assets
        WHERE symbol IN ({placeholders})
        ORDER BY portfolio_id
    """, symbols)
    return [row[0] for row in cursor.fetchall()]
