"""
Run registry - track batch job execution with status, counts, and timing.
Thin IO layer for run lifecycle management of price refreshes and snapshot jobs.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple
from enum import Enum

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Enumeration of run statuses."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RunNotFoundError(Exception):
    """Raised when run ID is not found."""
    pass


def _timestamp(value: datetime) -> str:
    return value.isoformat(sep=' ')


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value.replace(' ', 'T')) if value else None


def start_run(
    conn: sqlite3.Connection,
    dag_name: str,
    started_at: Optional[datetime] = None
) -> int:
    """
    Start a new job run and return run ID.

    Args:
        conn: SQLite connection
        dag_name: Name of the job being run (e.g. 'current_prices')
        started_at: Start timestamp (defaults to now)

    Returns:
        Run ID for tracking this execution
    """
    if started_at is None:
        started_at = datetime.now()

    cursor = conn.execute("""
        INSERT INTO runs (dag_name, started_at, status)
        VALUES (?, ?, ?)
    """, (dag_name, _timestamp(started_at), RunStatus.RUNNING.value))

    conn.commit()
    logger.debug(f"Started run {cursor.lastrowid} for {dag_name}")
    return cursor.lastrowid


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: RunStatus,
    finished_at: Optional[datetime] = None,
    rows_in: Optional[int] = None,
    rows_out: Optional[int] = None,
    log_path: Optional[str] = None,
    error_message: Optional[str] = None
) -> None:
    """
    Mark a run as finished with final status and counts.

    Args:
        conn: SQLite connection
        run_id: Run ID from start_run()
        status: Final status (COMPLETED or FAILED)
        finished_at: End timestamp (defaults to now)
        rows_in: Number of input items (symbols, snapshots...) processed
        rows_out: Number of rows written
        log_path: Path to detailed log file
        error_message: Error message if failed (logged, not stored)

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    if finished_at is None:
        finished_at = datetime.now()

    cursor = conn.execute("SELECT run_id FROM runs WHERE run_id = ?", (run_id,))
    if cursor.fetchone() is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    conn.execute("""
        UPDATE runs SET
            status = ?,
            finished_at = ?,
            rows_in = ?,
            rows_out = ?,
            log_path = ?
        WHERE run_id = ?
    """, (RunStatus(status).value, _timestamp(finished_at), rows_in, rows_out, log_path, run_id))

    conn.commit()

    if error_message:
        logger.error(f"Run {run_id} finished as {RunStatus(status).value}: {error_message}")


def _row_to_run(row: Tuple) -> Dict[str, Any]:
    run_info = {
        'run_id': row[0],
        'dag_name': row[1],
        'started_at': _parse_timestamp(row[2]),
        'finished_at': _parse_timestamp(row[3]),
        'status': RunStatus(row[4]),
        'rows_in': row[5],
        'rows_out': row[6]
    }

    if run_info['started_at'] and run_info['finished_at']:
        duration = run_info['finished_at'] - run_info['started_at']
        run_info['duration_seconds'] = int(duration.total_seconds())
    else:
        run_info['duration_seconds'] = None

    return run_info


def get_run_status(conn: sqlite3.Connection, run_id: int) -> Dict[str, Any]:
    """
    Get detailed status and counts for a run.

    Args:
        conn: SQLite connection
        run_id: Run ID to query

    Returns:
        Dictionary with run details and computed metrics

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    cursor = conn.execute("""
        SELECT run_id, dag_name, started_at, finished_at, status,
               rows_in, rows_out, log_path
        FROM runs
        WHERE run_id = ?
    """, (run_id,))

    row = cursor.fetchone()
    if row is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    run_info = _row_to_run(row)
    run_info['log_path'] = row[7]

    if run_info['rows_in'] and run_info['rows_out'] is not None:
        run_info['success_rate'] = run_info['rows_out'] / run_info['rows_in']
    else:
        run_info['success_rate'] = None

    return run_info


def list_recent_runs(
    conn: sqlite3.Connection,
    limit: int = 50,
    dag_name: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List recent runs with basic info, most recent first.

    Args:
        conn: SQLite connection
        limit: Maximum number of runs to return
        dag_name: Filter by specific job name (optional)

    Returns:
        List of run dictionaries with basic info
    """
    if dag_name:
        query = """
            SELECT run_id, dag_name, started_at, finished_at, status, rows_in, rows_out
            FROM runs
            WHERE dag_name = ?
            ORDER BY started_at DESC, run_id DESC
            LIMIT ?
        """
        params = (dag_name, limit)
    else:
        query = """
            SELECT run_id, dag_name, started_at, finished_at, status, rows_in, rows_out
            FROM runs
            ORDER BY started_at DESC, run_id DESC
            LIMIT ?
        """
        params = (limit,)

    return [_row_to_run(row) for row in conn.execute(query, params).fetchall()]


def get_dag_stats(
    conn: sqlite3.Connection,
    dag_name: str,
    days: int = 30,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Aggregate statistics for a job over a recent period.

    Args:
        conn: SQLite connection
        dag_name: Job name to analyze
        days: Number of days to look back
        now: Reference time (defaults to now)

    Returns:
        Dictionary with run counts and success rate
    """
    cutoff = (now or datetime.now()) - timedelta(days=days)

    row = conn.execute("""
        SELECT
            COUNT(*) as total_runs,
            SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) as completed_runs,
            SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed_runs,
            SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END) as running_runs,
            SUM(COALESCE(rows_out, 0)) as total_rows_out
        FROM runs
        WHERE dag_name = ? AND started_at >= ?
    """, (dag_name, _timestamp(cutoff))).fetchone()

    stats = {
        'dag_name': dag_name,
        'period_days': days,
        'total_runs': row[0] or 0,
        'completed_runs': row[1] or 0,
        'failed_runs': row[2] or 0,
        'running_runs': row[3] or 0,
        'total_rows_out': row[4] or 0
    }

    if stats['total_runs'] > 0:
        stats['success_rate'] = stats['completed_runs'] / stats['total_runs']
    else:
        stats['success_rate'] = None

    return stats
