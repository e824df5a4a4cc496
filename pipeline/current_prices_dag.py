"""
Current prices DAG - refresh latest prices in small chunks.
Composes: Provider → Transform → Validate → Store → Track, once per chunk.

Chunks are spaced by a delay to respect provider rate limits. A failing
chunk is logged and skipped; prices already stored stay in place.
"""

import logging
import os
import sqlite3
import time
from datetime import datetime
from typing import Dict, Any, Callable, List, Optional

from dotenv import load_dotenv

from ingestion.providers.yfinance_adapter import fetch_current_prices, YFinanceError
from ingestion.transforms.normalizers import normalize_current_prices
from ingestion.transforms.validators import validate_current_price_row, ValidationError
from storage.loaders import upsert_current_prices
from storage.run_registry import start_run, finish_run, RunStatus

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DAG_NAME = 'current_prices'


def chunked(items: List[str], size: int) -> List[List[str]]:
    """Split items into consecutive chunks of at most `size`."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


def run_current_prices(
    conn: sqlite3.Connection,
    tickers: List[str],
    chunk_size: Optional[int] = None,
    delay_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep
) -> Dict[str, Any]:
    """
    Refresh current prices for tickers, chunk by chunk.

    Args:
        conn: SQLite database connection
        tickers: Symbols to refresh
        chunk_size: Symbols per provider call (default: CURRENT_PRICE_CHUNK_SIZE or 5)
        delay_seconds: Pause between chunks (default: CURRENT_PRICE_CHUNK_DELAY_S or 1.0)
        sleep: Sleep function, injectable for tests

    Returns:
        Dictionary with run results: chunk counts, updated and failed tickers
    """
    if chunk_size is None:
        chunk_size = int(os.getenv('CURRENT_PRICE_CHUNK_SIZE', '5'))
    if delay_seconds is None:
        delay_seconds = float(os.getenv('CURRENT_PRICE_CHUNK_DELAY_S', '1.0'))

    unique_tickers = list(dict.fromkeys(tickers))
    chunks = chunked(unique_tickers, chunk_size)

    run_id = start_run(conn, DAG_NAME)
    start_time = datetime.now()

    result = {
        'run_id': run_id,
        'status': 'running',
        'chunks_total': len(chunks),
        'chunks_failed': 0,
        'rows_stored': 0,
        'updated_tickers': [],
        'failed_tickers': [],
        'validation_warnings': 0,
        'error_message': None
    }

    try:
        for i, chunk in enumerate(chunks):
            if i > 0 and delay_seconds > 0:
                sleep(delay_seconds)

            try:
                quotes = fetch_current_prices(chunk)
                rows = normalize_current_prices(quotes, source='yfinance', updated_at=datetime.now())

                valid_rows = []
                for row in rows:
                    try:
                        validate_current_price_row(row)
                        valid_rows.append(row)
                    except ValidationError as e:
                        result['validation_warnings'] += 1
                        logger.warning(f"Validation warning for {row.get('ticker', 'unknown')}: {e}")

                upsert_current_prices(conn, valid_rows)
            except (YFinanceError, ValueError, KeyError) as e:
                logger.error(f"Current price chunk {i + 1}/{len(chunks)} failed ({', '.join(chunk)}): {e}")
                result['chunks_failed'] += 1
                result['failed_tickers'].extend(chunk)
                continue

            result['rows_stored'] += len(valid_rows)
            result['updated_tickers'].extend(row['ticker'] for row in valid_rows)

            missing = set(chunk) - {row['ticker'] for row in valid_rows}
            result['failed_tickers'].extend(t for t in chunk if t in missing)

        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.COMPLETED,
            rows_in=len(unique_tickers),
            rows_out=result['rows_stored']
        )
        result['status'] = 'completed'
        logger.info(
            f"Current prices: {result['rows_stored']}/{len(unique_tickers)} updated, "
            f"{result['chunks_failed']} of {len(chunks)} chunks failed"
        )

    except Exception as e:
        logger.error(f"Current prices run {run_id} failed: {e}")
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
