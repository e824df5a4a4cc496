"""
Snapshots DAG - weekly portfolio value snapshots.
Composes: Readers → Valuation → Store → Track.

Snapshots are spaced 7 days apart starting at the earliest transaction.
Change events map to a recalculation strategy through `snapshot_strategy`.
"""

import logging
import sqlite3
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Any, Optional, Tuple

import pandas as pd

from analysis.calculations.valuation import (
    earliest_transaction_date,
    live_prices_for,
    portfolio_values_on_grid,
    price_assets_as_of,
)
from storage.loaders import delete_snapshots, upsert_snapshots
from storage.readers import (
    get_last_snapshot_date,
    list_portfolio_ids,
    list_portfolio_symbols,
    load_assets,
    load_current_quotes,
    load_price_history,
    load_snapshots,
)
from storage.run_registry import start_run, finish_run, RunStatus

logger = logging.getLogger(__name__)

DAG_NAME = 'portfolio_snapshots'
SNAPSHOT_STEP_DAYS = 7


class SnapshotReason(str, Enum):
    ASSET_ADDED = 'asset_added'
    TRANSACTION_ADDED = 'transaction_added'
    ASSET_MODIFIED = 'asset_modified'
    TRANSACTION_MODIFIED = 'transaction_modified'
    HISTORICAL_DATA_UPDATED = 'historical_data_updated'
    PERIODIC_UPDATE = 'periodic_update'


def snapshot_strategy(
    reason: SnapshotReason,
    start_date: Optional[date] = None,
    today: Optional[date] = None
) -> Tuple[bool, Optional[date]]:
    """
    Map a change event to (force_recalculate, start_from).

    - historical_data_updated: rebuild everything
    - asset/transaction added or modified: rebuild from the event date
      (incremental continuation when no date is given)
    - periodic_update: rebuild the last week

    Args:
        reason: Why snapshots need updating
        start_date: Date of the change event, if known
        today: Reference date for periodic updates (default: today)

    Returns:
        Tuple of (force_recalculate, start_from)
    """
    reason = SnapshotReason(reason)

    if reason is SnapshotReason.HISTORICAL_DATA_UPDATED:
        return (True, None)

    if reason is SnapshotReason.PERIODIC_UPDATE:
        today = today or date.today()
        return (False, today - timedelta(days=SNAPSHOT_STEP_DAYS))

    return (False, start_date)


def _snapshot_start(
    conn: sqlite3.Connection,
    portfolio_id: str,
    earliest: date,
    force_recalculate: bool,
    start_from: Optional[date]
) -> Tuple[date, Optional[date]]:
    """
    First snapshot date to compute, and the date from which stored snapshots are dropped.

    Rebuilding from `start_from` resumes the existing weekly cadence: the new
    run starts one step after the last snapshot dated before `start_from`.
    """
    if force_recalculate:
        return (earliest, earliest)

    if start_from is not None:
        anchor = None
        for point in load_snapshots(conn, portfolio_id):
            if point.date < start_from:
                anchor = point.date
        if anchor is None:
            return (earliest, earliest)
        start = anchor + timedelta(days=SNAPSHOT_STEP_DAYS)
        return (start, start)

    latest = get_last_snapshot_date(conn, portfolio_id)
    if latest is None:
        return (earliest, None)
    return (latest + timedelta(days=SNAPSHOT_STEP_DAYS), None)


def calculate_portfolio_snapshots(
    conn: sqlite3.Connection,
    portfolio_id: str,
    force_recalculate: bool = False,
    start_from: Optional[date] = None,
    as_of: Optional[date] = None
) -> Dict[str, Any]:
    """
    Compute and store weekly value snapshots for one portfolio.

    Args:
        conn: SQLite database connection
        portfolio_id: Portfolio to snapshot
        force_recalculate: Drop every stored snapshot and rebuild from the first transaction
        start_from: Rebuild snapshots dated on/after this date
        as_of: Last date a snapshot may carry (default: today)

    Returns:
        Dictionary with run results: snapshots written and deleted, date range
    """
    as_of = as_of or date.today()

    run_id = start_run(conn, DAG_NAME)
    start_time = datetime.now()

    result = {
        'run_id': run_id,
        'status': 'running',
        'portfolio_id': portfolio_id,
        'snapshots_deleted': 0,
        'snapshots_written': 0,
        'start_date': None,
        'end_date': None,
        'error_message': None
    }

    try:
        assets = load_assets(conn, portfolio_id)
        earliest = earliest_transaction_date(assets)

        if earliest is None:
            logger.info(f"Portfolio {portfolio_id} has no transactions, nothing to snapshot")
        else:
            start, drop_from = _snapshot_start(conn, portfolio_id, earliest, force_recalculate, start_from)

            if force_recalculate:
                result['snapshots_deleted'] = delete_snapshots(conn, portfolio_id)
            elif drop_from is not None:
                result['snapshots_deleted'] = delete_snapshots(conn, portfolio_id, drop_from)

            grid = pd.date_range(pd.Timestamp(start), pd.Timestamp(as_of), freq=f"{SNAPSHOT_STEP_DAYS}D")

            if len(grid) > 0:
                symbols = list_portfolio_symbols(conn, portfolio_id)
                price_history = load_price_history(conn, symbols, end_date=as_of)
                live_prices = live_prices_for(load_current_quotes(conn, symbols), as_of)
                assets = price_assets_as_of(assets, price_history, live_prices, as_of)

                points = portfolio_values_on_grid(assets, grid, price_history, live_prices, as_of)
                upsert_snapshots(conn, portfolio_id, points)

                result['snapshots_written'] = len(points)
                result['start_date'] = points[0].date
                result['end_date'] = points[-1].date

        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.COMPLETED,
            rows_in=1,
            rows_out=result['snapshots_written']
        )
        result['status'] = 'completed'

        logger.info(
            f"Snapshots for {portfolio_id}: {result['snapshots_written']} written, "
            f"{result['snapshots_deleted']} deleted"
        )

    except Exception as e:
        logger.error(f"Snapshot run {run_id} for {portfolio_id} failed: {e}")
        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.FAILED,
            rows_in=1,
            rows_out=result['snapshots_written'],
            error_message=str(e)
        )
        result['status'] = 'failed'
        result['error_message'] = str(e)

    result['duration_seconds'] = (datetime.now() - start_time).total_seconds()
    return result


def snapshot_job_key(portfolio_id: str) -> str:
    return f"snapshots:{portfolio_id}"


def trigger_snapshot_update(
    queue,
    conn: sqlite3.Connection,
    portfolio_id: str,
    reason: SnapshotReason,
    start_date: Optional[date] = None,
    today: Optional[date] = None,
    delay_s: float = 0
):
    """
    Schedule a snapshot recalculation for a change event.

    A pending update for the same portfolio is merged rather than replaced:
    a forced rebuild stays forced and the earlier start date wins.

    Args:
        queue: JobQueue to schedule on
        conn: SQLite connection the job will use
        portfolio_id: Portfolio whose snapshots changed
        reason: Change event
        start_date: Date of the change event
        today: Reference date for periodic updates
        delay_s: Delay before the job becomes due

    Returns:
        The scheduled Job
    """
    force, start_from = snapshot_strategy(reason, start_date, today)
    key = snapshot_job_key(portfolio_id)

    pending = queue.get(key)
    if pending is not None:
        force = force or pending.kwargs.get('force_recalculate', False)
        starts = [s for s in (pending.kwargs.get('start_from'), start_from) if s is not None]
        start_from = min(starts) if starts else None

    logger.info(f"Snapshot update for {portfolio_id} ({SnapshotReason(reason).value}): "
                f"force={force}, start_from={start_from}")

    return queue.enqueue(
        key,
        calculate_portfolio_snapshots,
        conn,
        portfolio_id,
        delay_s=delay_s,
        force_recalculate=force,
        start_from=start_from
    )


def update_all_portfolio_snapshots(queue, conn: sqlite3.Connection, today: Optional[date] = None) -> int:
    """
    Schedule a periodic snapshot update for every portfolio.

    Returns:
        Number of portfolios scheduled
    """
    portfolio_ids = list_portfolio_ids(conn)
    if not portfolio_ids:
        logger.info("No portfolios found for snapshot update")
        return 0

    for portfolio_id in portfolio_ids:
        trigger_snapshot_update(queue, conn, portfolio_id, SnapshotReason.PERIODIC_UPDATE, today=today)

    logger.info(f"Periodic snapshot update scheduled for {len(portfolio_ids)} portfolios")
    return len(portfolio_ids)
