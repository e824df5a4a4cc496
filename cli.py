#!/usr/bin/env python3
"""
Main CLI for the portfolio analytics engine.
Usage: python cli.py analytics PORTFOLIO_ID [daily|weekly]
       python cli.py refresh PORTFOLIO_ID
"""

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from analysis.analysis_job import compute_analytics, PortfolioNotFoundError
from pipeline.job_queue import JobQueue, schedule_portfolio_refresh
from reports.atomic_writer import write_json_atomic, AtomicWriteError
from storage.loaders import init_database, get_connection
from storage.readers import get_portfolio

# Load environment variables
load_dotenv()


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 3:
        print("Usage:")
        print("  python cli.py analytics PORTFOLIO_ID [daily|weekly]")
        print("  python cli.py refresh PORTFOLIO_ID")
        print()
        print("Examples:")
        print("  python cli.py analytics main")
        print("  python cli.py analytics main weekly")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    command = sys.argv[1]
    portfolio_id = sys.argv[2]

    db_path = Path(os.getenv('PORTFOLIO_DB_PATH', './data/portfolio.db'))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(str(db_path))
    init_database(conn)

    try:
        if command == 'analytics':
            data_source = sys.argv[3] if len(sys.argv) > 3 else None
            if data_source not in (None, 'daily', 'weekly'):
                print(f"Unknown data source: {data_source} (use daily or weekly)")
                sys.exit(1)
            generate_analytics(conn, portfolio_id, data_source)
        elif command == 'refresh':
            refresh_portfolio(conn, portfolio_id)
        else:
            print(f"Unknown command: {command}")
            print("Available commands: analytics, refresh")
            sys.exit(1)
    finally:
        conn.close()


def generate_analytics(conn, portfolio_id: str, data_source=None):
    """
    Compute analytics for a portfolio and write them to ./data/analytics/{portfolio_id}.json.
    """
    print(f"Computing analytics for {portfolio_id}")
    print()

    try:
        result = compute_analytics(conn, portfolio_id, data_source=data_source)
    except PortfolioNotFoundError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    output_path = Path('./data/analytics') / f'{portfolio_id}.json'
    try:
        write_json_atomic(result.to_dict(), output_path)
    except AtomicWriteError as e:
        print(f"ERROR: Write failed: {e}")
        sys.exit(1)

    risk = result.risk_metrics
    perf = result.performance_metrics
    bench = result.benchmark_comparisons
    meta = result.metadata

    print(f"📊 {meta.data_points} {meta.data_source.value} points, {meta.asset_count} assets")
    if meta.date_range['start']:
        print(f"📅 {meta.date_range['start']} to {meta.date_range['end']}")
    print()
    print("💰 Performance:")
    print(f"   Time-weighted return: {perf.time_weighted_return:+.2%}")
    print(f"   Annualized return: {perf.annualized_return:+.2%}")
    print(f"   YTD: {perf.ytd_return:+.2%}")
    print()
    print("⚠️  Risk:")
    print(f"   Volatility: {risk.volatility:.2%}")
    print(f"   Max drawdown: {risk.max_drawdown:.2%}")
    print(f"   Sharpe ratio: {risk.sharpe_ratio:.2f}")
    print(f"   Beta: {risk.beta:.2f}")
    print()
    print(f"📈 vs {meta.benchmark_ticker}:")
    print(f"   Correlation: {bench.correlation:.2f}")
    print(f"   Tracking error: {bench.tracking_error:.4f}")
    print()

    if meta.data_quality_notes:
        print("📝 Data quality notes:")
        for note in meta.data_quality_notes:
            print(f"   - {note}")
        print()

    print(f"💾 Written to: {output_path}")


def refresh_portfolio(conn, portfolio_id: str):
    """Refresh prices for a portfolio, then its snapshots."""
    if get_portfolio(conn, portfolio_id) is None:
        print(f"ERROR: Portfolio {portfolio_id} not found")
        sys.exit(1)

    queue = JobQueue()
    schedule_portfolio_refresh(queue, conn, portfolio_id)

    print(f"Refreshing {portfolio_id}")
    for job in queue.run_until_empty():
        status = "✅" if job.status == 'completed' else "❌" if job.status == 'failed' else "🔁"
        print(f"   {status} {job.key} ({job.status}, attempt {job.attempts})")


if __name__ == '__main__':
    main()
