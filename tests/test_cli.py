"""
Tests for CLI entry points - in-process calls in a temp workspace.
"""

import json
import pytest
import sqlite3
import sys
from datetime import date, datetime, timedelta

import cli
from storage.loaders import init_database, upsert_portfolio, upsert_assets, upsert_transactions, upsert_prices


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Seeded database in a temp working directory."""
    db_path = tmp_path / 'data' / 'portfolio.db'
    db_path.parent.mkdir()
    conn = sqlite3.connect(str(db_path))
    init_database(conn)
    upsert_portfolio(conn, 'main', 'Main')
    upsert_assets(conn, [{'id': 'a1', 'portfolio_id': 'main', 'symbol': 'AAPL', 'type': 'stock'}])
    upsert_transactions(conn, [
        {'id': 't1', 'asset_id': 'a1', 'type': 'buy', 'date': date(2024, 1, 2), 'quantity': 5, 'price': 180.0},
    ])
    upsert_prices(conn, [
        {
            'ticker': 'AAPL', 'date': date(2024, 1, 2) + timedelta(days=i), 'open': 180.0 + i,
            'high': 181.0 + i, 'low': 179.0 + i, 'close': 180.0 + i, 'adj_close': None,
            'volume': 1000, 'source': 'yfinance', 'as_of': date(2024, 1, 2) + timedelta(days=i),
            'ingested_at': datetime(2024, 2, 1)
        }
        for i in range(10)
    ])
    conn.close()

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('PORTFOLIO_DB_PATH', str(db_path))
    return tmp_path


def _run(monkeypatch, *args):
    monkeypatch.setattr(sys, 'argv', ['cli.py', *args])
    cli.main()


class TestCLI:

    def test_analytics_writes_json(self, workspace, monkeypatch, capsys):
        _run(monkeypatch, 'analytics', 'main', 'daily')

        output = capsys.readouterr().out
        assert 'Computing analytics for main' in output
        assert 'Written to' in output

        payload = json.loads((workspace / 'data' / 'analytics' / 'main.json').read_text(encoding='utf-8'))
        assert payload['metadata']['data_source'] == 'daily'
        assert payload['metadata']['asset_count'] == 1

    def test_unknown_portfolio(self, workspace, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(monkeypatch, 'analytics', 'missing')

        assert exc.value.code == 1
        assert 'not found' in capsys.readouterr().out

    def test_unknown_data_source(self, workspace, monkeypatch):
        with pytest.raises(SystemExit):
            _run(monkeypatch, 'analytics', 'main', 'monthly')

    def test_usage(self, workspace, monkeypatch, capsys):
        with pytest.raises(SystemExit):
            _run(monkeypatch, 'analytics')

        assert 'Usage' in capsys.readouterr().out

    def test_refresh_unknown_portfolio(self, workspace, monkeypatch, capsys):
        with pytest.raises(SystemExit):
            _run(monkeypatch, 'refresh', 'missing')

        assert 'not found' in capsys.readouterr().out
