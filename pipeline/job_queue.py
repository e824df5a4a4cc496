"""
In-process job queue for batch refreshes.

Jobs are named callables with a due time. Enqueueing a key that is already
pending replaces the pending job. A job that raises, or returns a result
dict whose status is 'failed', is retried with exponential back-off until
it reaches max_attempts.
"""

import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from pipeline.current_prices_dag import run_current_prices
from pipeline.historical_prices_dag import run_historical_prices, PipelineError
from pipeline.snapshots_dag import SnapshotReason, trigger_snapshot_update
from storage.readers import list_portfolio_symbols, list_portfolios_for_symbols

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class JobQueueError(Exception):
    """Raised when a job cannot be scheduled or looked up."""
    pass


@dataclass
class Job:
    key: str
    func: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    due_at: float = 0.0
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class JobResult:
    key: str
    status: str  # 'completed', 'retrying' or 'failed'
    attempts: int
    result: Any = None
    error: Optional[str] = None


def _failure_message(outcome: Any) -> Optional[str]:
    """Pipeline runs report failure through their result dict instead of raising."""
    if isinstance(outcome, dict) and outcome.get('status') == 'failed':
        return outcome.get('error_message') or 'run reported failure'
    return None


class JobQueue:
    """
    Keyed, delay-aware job queue with retry and back-off.

    Args:
        max_attempts: Attempts before a job is dropped (default: JOB_MAX_ATTEMPTS or 3)
        backoff_base_s: Delay before the first retry, doubled on each further retry
            (default: JOB_BACKOFF_BASE_S or 30)
        clock: Returns the current time in seconds
        sleep: Blocks for a number of seconds
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts is None:
            max_attempts = int(os.getenv('JOB_MAX_ATTEMPTS', '3'))
        if backoff_base_s is None:
            backoff_base_s = float(os.getenv('JOB_BACKOFF_BASE_S', '30'))
        if max_attempts < 1:
            raise JobQueueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.max_attempts = max_attempts
        self.backoff_base_s = backoff_base_s
        self.clock = clock
        self.sleep = sleep
        self._jobs: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, key: str, func: Callable[..., Any], *args, delay_s: float = 0, **kwargs) -> Job:
        """
        Schedule `func(*args, **kwargs)` to run after `delay_s` seconds.

        A pending job with the same key is overwritten.
        """
        if not key:
            raise JobQueueError("Job key must be a non-empty string")
        if delay_s < 0:
            raise JobQueueError(f"delay_s must be non-negative, got {delay_s}")

        if key in self._jobs:
            logger.debug(f"Replacing pending job {key}")

        job = Job(key=key, func=func, args=args, kwargs=kwargs, due_at=self.clock() + delay_s)
        self._jobs[key] = job
        return job

    def get(self, key: str) -> Optional[Job]:
        return self._jobs.get(key)

    def cancel(self, key: str) -> None:
        if key not in self._jobs:
            raise JobQueueError(f"No pending job {key}")
        del self._jobs[key]

    def pending(self) -> List[Job]:
        """Pending jobs ordered by due time."""
        return sorted(self._jobs.values(), key=lambda job: job.due_at)

    def backoff_delay(self, attempts: int) -> float:
        """Delay after the given number of failed attempts."""
        return self.backoff_base_s * (2 ** (attempts - 1))

    def _run_job(self, job: Job) -> JobResult:
        # Removed before running so the job may enqueue follow-ups under its own key
        del self._jobs[job.key]
        job.attempts += 1

        try:
            outcome = job.func(*job.args, **job.kwargs)
            error = _failure_message(outcome)
        except Exception as e:
            outcome = None
            error = f"{type(e).__name__}: {e}"

        if error is None:
            logger.info(f"Job {job.key} completed (attempt {job.attempts})")
            return JobResult(key=job.key, status='completed', attempts=job.attempts, result=outcome)

        job.last_error = error

        if job.attempts >= self.max_attempts:
            logger.error(f"Job {job.key} failed after {job.attempts} attempts: {error}")
            return JobResult(key=job.key, status='failed', attempts=job.attempts, result=outcome, error=error)

        delay = self.backoff_delay(job.attempts)
        logger.warning(f"Job {job.key} attempt {job.attempts} failed: {error}; retrying in {delay}s")

        if job.key not in self._jobs:
            job.due_at = self.clock() + delay
            self._jobs[job.key] = job
        return JobResult(key=job.key, status='retrying', attempts=job.attempts, result=outcome, error=error)

    def run_pending(self) -> List[JobResult]:
        """Run every job that is due now, in due order."""
        now = self.clock()
        return [self._run_job(job) for job in self.pending() if job.due_at <= now and job.key in self._jobs]

    def run_until_empty(self, max_jobs: int = 1000) -> List[JobResult]:
        """
        Run jobs, sleeping until each is due, until the queue is empty.

        Raises:
            JobQueueError: If more than max_jobs executions are needed
        """
        results: List[JobResult] = []
        while self._jobs:
            if len(results) >= max_jobs:
                raise JobQueueError(f"Queue did not drain after {max_jobs} job runs")

            job = self.pending()[0]
            wait = job.due_at - self.clock()
            if wait > 0:
                self.sleep(wait)
            results.append(self._run_job(job))
        return results


def portfolio_refresh_key(portfolio_id: str) -> str:
    return f"refresh:{portfolio_id}"


def refresh_portfolio_prices(
    queue: JobQueue,
    conn: sqlite3.Connection,
    portfolio_id: str,
    benchmark_ticker: Optional[str] = None
) -> Dict[str, Any]:
    """
    Refresh historical and current prices for a portfolio's symbols and the
    benchmark, then schedule snapshot updates.

    Every portfolio holding a symbol that gained new closes is rebuilt; the
    refreshed portfolio otherwise gets a periodic update.

    Returns:
        Dictionary with the historical and current run results and the rebuilt portfolio ids
    """
    benchmark_ticker = benchmark_ticker or os.getenv('BENCHMARK_TICKER', 'SPY')
    symbols = list_portfolio_symbols(conn, portfolio_id)
    tickers = list(dict.fromkeys(symbols + [benchmark_ticker]))

    historical = run_historical_prices(conn, tickers)
    if historical['status'] == 'failed':
        raise PipelineError(f"Historical refresh failed: {historical['error_message']}")

    current = run_current_prices(conn, symbols)
    if current['status'] == 'failed':
        raise PipelineError(f"Current price refresh failed: {current['error_message']}")

    # New closes invalidate the snapshots of every portfolio holding the symbol
    rebuilt = list_portfolios_for_symbols(conn, historical['updated_tickers'])
    for holder_id in rebuilt:
        trigger_snapshot_update(queue, conn, holder_id, SnapshotReason.HISTORICAL_DATA_UPDATED)
    if portfolio_id not in rebuilt:
        trigger_snapshot_update(queue, conn, portfolio_id, SnapshotReason.PERIODIC_UPDATE)

    return {'historical': historical, 'current': current, 'rebuilt_portfolios': rebuilt}


def schedule_portfolio_refresh(
    queue: JobQueue,
    conn: sqlite3.Connection,
    portfolio_id: str,
    delay_s: float = 0
) -> Job:
    """
    Enqueue "refresh prices for portfolio X"; on success it chains a snapshot update.
    """
    return queue.enqueue(
        portfolio_refresh_key(portfolio_id),
        refresh_portfolio_prices,
        queue,
        conn,
        portfolio_id,
        delay_s=delay_s
    )
