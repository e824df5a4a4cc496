"""
Database loaders - idempotent upsert functions for SQLite.
Thin IO layer with focus on data integrity and idempotence.
"""

import sqlite3
from datetime import date, datetime
from typing import Dict, Any, Iterable, List, Tuple, Optional

from analysis.models import AssetType, TransactionType, PriceDataPoint

ASSET_TYPES = tuple(t.value for t in AssetType)
TRANSACTION_TYPES = tuple(t.value for t in TransactionType)


def _iso(value: Any) -> Any:
    """Store dates and timestamps as ISO strings."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _in_clause(values: Tuple[str, ...]) -> str:
    return ', '.join(f"'{v}'" for v in values)


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    # Enable foreign keys
    conn.execute("PRAGMA foreign_keys = ON")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolios (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at DATETIME NOT NULL
        )
    """)

    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS assets (
            id TEXT PRIMARY KEY,
            portfolio_id TEXT NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
            symbol TEXT,
            name TEXT,
            type TEXT NOT NULL CHECK(type IN ({_in_clause(ASSET_TYPES)})),
            current_price REAL,
            created_at DATETIME NOT NULL
        )
    """)

    # Deleting an asset removes its transactions
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            asset_id TEXT NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
            type TEXT NOT NULL CHECK(type IN ({_in_clause(TRANSACTION_TYPES)})),
            date TEXT NOT NULL,
            quantity REAL,
            price REAL,
            fees REAL CHECK(fees IS NULL OR fees >= 0),
            notes TEXT
        )
    """)

    # Historical prices, benchmark tickers included
    conn.execute("""
        CREATE TABLE IF NOT EXISTS prices (
            ticker TEXT NOT NULL,
            date DATE NOT NULL,
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            adj_close REAL,
            volume INTEGER NOT NULL,
            source TEXT NOT NULL,
            as_of DATE NOT NULL,
            ingested_at DATETIME NOT NULL,
            PRIMARY KEY (ticker, date)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS current_prices (
            ticker TEXT PRIMARY KEY,
            price REAL NOT NULL,
            updated_at DATETIME NOT NULL,
            source TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_snapshots (
            portfolio_id TEXT NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            value REAL NOT NULL,
            calculated_at DATETIME NOT NULL,
            PRIMARY KEY (portfolio_id, date)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            dag_name TEXT NOT NULL,
            started_at DATETIME NOT NULL,
            finished_at DATETIME,
            status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
            rows_in INTEGER,
            rows_out INTEGER,
            log_path TEXT
        )
    """)

    # Create indices for performance
    conn.execute("CREATE INDEX IF NOT EXISTS idx_assets_portfolio ON assets(portfolio_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_assets_symbol ON assets(symbol)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_asset ON transactions(asset_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_ticker ON prices(ticker)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_date ON prices(date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

    conn.commit()


def get_connection(db_path: str = './data/portfolio.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def _upsert(
    conn: sqlite3.Connection,
    table: str,
    key_columns: Tuple[str, ...],
    rows: List[Dict[str, Any]],
    columns: Tuple[str, ...]
) -> Tuple[int, int]:
    """Insert or update rows by primary key, counting each outcome."""
    inserted = 0
    updated = 0
    where = ' AND '.join(f"{c} = ?" for c in key_columns)
    value_columns = [c for c in columns if c not in key_columns]

    for row in rows:
        key = tuple(_iso(row[c]) for c in key_columns)
        cursor = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", key)
        exists = cursor.fetchone()[0] > 0

        if exists:
            assignments = ', '.join(f"{c} = ?" for c in value_columns)
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {where}",
                tuple(_iso(row.get(c)) for c in value_columns) + key
            )
            updated += 1
        else:
            placeholders = ', '.join('?' for _ in columns)
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(_iso(row.get(c)) for c in columns)
            )
            inserted += 1

    conn.commit()
    return (inserted, updated)


def upsert_portfolio(
    conn: sqlite3.Connection,
    portfolio_id: str,
    name: str,
    created_at: Optional[datetime] = None
) -> Tuple[int, int]:
    """Create or rename a portfolio."""
    row = {'id': portfolio_id, 'name': name, 'created_at': created_at or datetime.now()}
    existing = conn.execute("SELECT created_at FROM portfolios WHERE id = ?", (portfolio_id,)).fetchone()
    if existing is not None:
        row['created_at'] = existing[0]
    return _upsert(conn, 'portfolios', ('id',), [row], ('id', 'name', 'created_at'))


def upsert_assets(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert asset rows into database.
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        rows: Dicts with id, portfolio_id, type and optional symbol, name, current_price

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    prepared = []
    for row in rows:
        prepared.append({
            'created_at': datetime.now(),
            **row,
            'type': AssetType(row['type']).value
        })

    return _upsert(
        conn, 'assets', ('id',), prepared,
        ('id', 'portfolio_id', 'symbol', 'name', 'type', 'current_price', 'created_at')
    )


def upsert_transactions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert transaction rows into database.

    Args:
        conn: SQLite connection
        rows: Dicts with id, asset_id, type, date and optional quantity, price, fees, notes

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    prepared = [{**row, 'type': TransactionType(row['type']).value} for row in rows]
    return _upsert(
        conn, 'transactions', ('id',), prepared,
        ('id', 'asset_id', 'type', 'date', 'quantity', 'price', 'fees', 'notes')
    )


def delete_asset(conn: sqlite3.Connection, asset_id: str) -> bool:
    """
    Delete an asset and, through the foreign key cascade, its transactions.

    Returns:
        True if an asset was deleted
    """
    cursor = conn.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
    conn.commit()
    return cursor.rowcount > 0


def delete_transaction(conn: sqlite3.Connection, transaction_id: str) -> bool:
    cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
    conn.commit()
    return cursor.rowcount > 0


def upsert_prices(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert price rows into database.
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        rows: List of canonical price dictionaries

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return _upsert(
        conn, 'prices', ('ticker', 'date'), rows,
        ('ticker', 'date', 'open', 'high', 'low', 'close', 'adj_close',
         'volume', 'source', 'as_of', 'ingested_at')
    )


def upsert_current_prices(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert latest prices, one row per ticker.

    Args:
        conn: SQLite connection
        rows: Dicts with ticker, price, updated_at, source

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return _upsert(
        conn, 'current_prices', ('ticker',), rows,
        ('ticker', 'price', 'updated_at', 'source')
    )


def upsert_snapshots(
    conn: sqlite3.Connection,
    portfolio_id: str,
    points: Iterable[PriceDataPoint],
    calculated_at: Optional[datetime] = None
) -> Tuple[int, int]:
    """
    Upsert portfolio value snapshots.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    calculated_at = calculated_at or datetime.now()
    rows = [
        {'portfolio_id': portfolio_id, 'date': p.date, 'value': p.value, 'calculated_at': calculated_at}
        for p in points
    ]
    if not rows:
        return (0, 0)

    return _upsert(
        conn, 'portfolio_snapshots', ('portfolio_id', 'date'), rows,
        ('portfolio_id', 'date', 'value', 'calculated_at')
    )


def delete_snapshots(
    conn: sqlite3.Connection,
    portfolio_id: str,
    from_date: Optional[date] = None
) -> int:
    """
    Delete snapshots of a portfolio, all of them or those dated on/after from_date.

    Returns:
        Number of deleted rows
    """
    if from_date is None:
        cursor = conn.execute(
            "DELETE FROM portfolio_snapshots WHERE portfolio_id = ?", (portfolio_id,)
        )
    else:
        cursor = conn.execute(
            "DELETE FROM portfolio_snapshots WHERE portfolio_id = ? AND date >= ?",
            (portfolio_id, from_date.isoformat())
        )
    conn.commit()
    return cursor.rowcount
