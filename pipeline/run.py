"""
Pipeline runner CLI - makes the batch jobs human-visible.
Usage: python pipeline/run.py COMMAND [args]
"""

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pipeline.current_prices_dag import run_current_prices
from pipeline.historical_prices_dag import run_historical_prices
from pipeline.job_queue import JobQueue, schedule_portfolio_refresh
from pipeline.snapshots_dag import calculate_portfolio_snapshots, update_all_portfolio_snapshots
from storage.loaders import init_database, get_connection
from storage.readers import get_portfolio, list_portfolio_symbols
from storage.run_registry import list_recent_runs, get_dag_stats

# Load environment variables
load_dotenv()

COMMANDS = ['historical_prices', 'current_prices', 'snapshots', 'refresh', 'runs']


def _usage():
    print("Usage:")
    print("  python pipeline/run.py historical_prices [TICKER ...]")
    print("  python pipeline/run.py current_prices [TICKER ...]")
    print("  python pipeline/run.py snapshots PORTFOLIO_ID|all [--force]")
    print("  python pipeline/run.py refresh PORTFOLIO_ID")
    print("  python pipeline/run.py runs [DAG_NAME]")
    print()
    print("Without tickers, every symbol held in any portfolio is refreshed")
    print("(historical_prices also refreshes the benchmark).")
    print()
    print("Examples:")
    print("  python pipeline/run.py historical_prices AAPL MSFT")
    print("  python pipeline/run.py snapshots main --force")


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        if len(sys.argv) >= 2:
            print(f"Unknown command: {sys.argv[1]}")
            print(f"Available commands: {', '.join(COMMANDS)}")
            print()
        _usage()
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    command = sys.argv[1]
    args = sys.argv[2:]

    # Setup database
    db_path = Path(os.getenv('PORTFOLIO_DB_PATH', './data/portfolio.db'))
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(str(db_path))
    init_database(conn)

    try:
        if command == 'historical_prices':
            tickers = args or list_portfolio_symbols(conn) + [os.getenv('BENCHMARK_TICKER', 'SPY')]
            print(f"🚀 Running historical_prices for {len(tickers)} tickers")
            print()
            result = run_historical_prices(conn, tickers)
            _display_run(result)
            _display_tickers(result)

        elif command == 'current_prices':
            tickers = args or list_portfolio_symbols(conn)
            print(f"🚀 Running current_prices for {len(tickers)} tickers")
            print()
            result = run_current_prices(conn, tickers)
            _display_run(result)
            print(f"   Chunks: {result['chunks_total']} ({result['chunks_failed']} failed)")
            _display_tickers(result)

        elif command == 'snapshots':
            force = '--force' in args
            targets = [a for a in args if a != '--force']
            if not targets:
                _usage()
                sys.exit(1)
            target = targets[0]

            if target == 'all':
                queue = JobQueue()
                scheduled = update_all_portfolio_snapshots(queue, conn)
                print(f"🚀 Periodic snapshot update for {scheduled} portfolios")
                _display_jobs(queue.run_until_empty())
            else:
                _require_portfolio(conn, target)
                print(f"🚀 Calculating snapshots for {target}{' (force)' if force else ''}")
                print()
                result = calculate_portfolio_snapshots(conn, target, force_recalculate=force)
                _display_run(result)
                print(f"   Written: {result['snapshots_written']}")
                print(f"   Deleted: {result['snapshots_deleted']}")
                if result['start_date']:
                    print(f"   Range: {result['start_date']} to {result['end_date']}")

        elif command == 'refresh':
            if not args:
                _usage()
                sys.exit(1)
            _require_portfolio(conn, args[0])
            queue = JobQueue()
            schedule_portfolio_refresh(queue, conn, args[0])
            print(f"🚀 Refreshing prices and snapshots for {args[0]}")
            _display_jobs(queue.run_until_empty())

        elif command == 'runs':
            dag_name = args[0] if args else None
            _display_runs(conn, dag_name)

    finally:
        conn.close()


def _require_portfolio(conn, portfolio_id: str):
    if get_portfolio(conn, portfolio_id) is None:
        print(f"❌ Portfolio not found: {portfolio_id}")
        sys.exit(1)


def _display_run(result: dict):
    """Display common run results."""
    print("📊 Pipeline Results:")
    print(f"   Status: {result['status'].upper()}")
    print(f"   Run ID: {result['run_id']}")
    print(f"   Duration: {result['duration_seconds']:.1f}s")
    if result['status'] != 'completed':
        print(f"❌ Error: {result.get('error_message', 'Unknown error')}")


def _display_tickers(result: dict):
    if result.get('updated_tickers'):
        print(f"✅ Updated: {', '.join(result['updated_tickers'])}")
    if result.get('skipped_tickers'):
        print(f"➡️  Up to date: {', '.join(result['skipped_tickers'])}")
    if result.get('failed_tickers'):
        print(f"⚠️  Failed: {', '.join(result['failed_tickers'])}")
    print()


def _display_jobs(results):
    print()
    for job in results:
        icon = "✅" if job.status == 'completed' else "🔁" if job.status == 'retrying' else "❌"
        line = f"   {icon} {job.key}: {job.status} (attempt {job.attempts})"
        if job.error:
            line += f" - {job.error}"
        print(line)
    print()


def _display_runs(conn, dag_name=None):
    runs = list_recent_runs(conn, limit=20, dag_name=dag_name)
    if not runs:
        print("No runs recorded")
        return

    print("📋 Recent runs:")
    for run in runs:
        print(
            f"   #{run['run_id']} {run['dag_name']:<20} {run['status'].value:<10} "
            f"{run['started_at']}  in={run['rows_in']} out={run['rows_out']}"
        )

    if dag_name:
        stats = get_dag_stats(conn, dag_name)
        print()
        print(f"📊 Last {stats['period_days']} days: {stats['completed_runs']}/{stats['total_runs']} completed")


if __name__ == '__main__':
    main()
