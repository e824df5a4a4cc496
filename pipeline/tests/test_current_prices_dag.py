"""
Tests for current prices DAG - chunked refresh with pacing.
"""

import pytest
import sqlite3
from unittest.mock import Mock, patch

from pipeline.current_prices_dag import run_current_prices, chunked
from ingestion.providers.yfinance_adapter import YFinanceError
from storage.loaders import init_database
from storage.readers import load_current_quotes
from storage.run_registry import get_run_status, RunStatus


@pytest.fixture
def in_memory_db():
    """Create in-memory SQLite database for testing."""
    conn = sqlite3.connect(':memory:')
    init_database(conn)
    return conn


def _quotes(chunk):
    return [{'Ticker': t, 'Price': 100.0 + i} for i, t in enumerate(chunk)]


def _stored_prices(conn):
    return {ticker: price for ticker, (price, _) in load_current_quotes(conn).items()}


class TestChunked:

    def test_sizes(self):
        tickers = [f"T{i}" for i in range(12)]
        assert [len(c) for c in chunked(tickers, 5)] == [5, 5, 2]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunked(['AAPL'], 0)


class TestCurrentPricesDAG:
    """Tests for run_current_prices orchestration."""

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_chunks_and_pacing(self, mock_fetch, in_memory_db):
        """Test that 12 symbols make 3 provider calls with 2 pauses."""
        mock_fetch.side_effect = _quotes
        sleep = Mock()
        tickers = [f"T{i}" for i in range(12)]

        result = run_current_prices(in_memory_db, tickers, chunk_size=5, delay_seconds=1.5, sleep=sleep)

        assert mock_fetch.call_count == 3
        assert [len(c.args[0]) for c in mock_fetch.call_args_list] == [5, 5, 2]
        assert sleep.call_count == 2
        sleep.assert_called_with(1.5)
        assert result['status'] == 'completed'
        assert result['chunks_total'] == 3
        assert result['rows_stored'] == 12
        assert len(_stored_prices(in_memory_db)) == 12

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_failed_chunk_survived(self, mock_fetch, in_memory_db):
        def fetch(chunk):
            if 'T5' in chunk:
                raise YFinanceError("rate limited")
            return _quotes(chunk)
        mock_fetch.side_effect = fetch
        tickers = [f"T{i}" for i in range(12)]

        result = run_current_prices(in_memory_db, tickers, chunk_size=5, delay_seconds=0, sleep=Mock())

        assert result['status'] == 'completed'
        assert result['chunks_failed'] == 1
        assert result['failed_tickers'] == ['T5', 'T6', 'T7', 'T8', 'T9']
        assert result['rows_stored'] == 7

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_missing_quote_reported(self, mock_fetch, in_memory_db):
        mock_fetch.return_value = [{'Ticker': 'AAPL', 'Price': 190.0}]

        result = run_current_prices(in_memory_db, ['AAPL', 'DEAD'], chunk_size=5, sleep=Mock())

        assert result['updated_tickers'] == ['AAPL']
        assert result['failed_tickers'] == ['DEAD']

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_previous_price_kept_on_failure(self, mock_fetch, in_memory_db):
        mock_fetch.return_value = [{'Ticker': 'AAPL', 'Price': 190.0}]
        run_current_prices(in_memory_db, ['AAPL'], sleep=Mock())

        mock_fetch.side_effect = YFinanceError("down")
        run_current_prices(in_memory_db, ['AAPL'], sleep=Mock())

        assert _stored_prices(in_memory_db) == {'AAPL': 190.0}

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_chunk_size_from_env(self, mock_fetch, in_memory_db, monkeypatch):
        monkeypatch.setenv('CURRENT_PRICE_CHUNK_SIZE', '2')
        monkeypatch.setenv('CURRENT_PRICE_CHUNK_DELAY_S', '0')
        mock_fetch.side_effect = _quotes
        sleep = Mock()

        result = run_current_prices(in_memory_db, ['A', 'B', 'C'], sleep=sleep)

        assert result['chunks_total'] == 2
        sleep.assert_not_called()

    def test_no_tickers(self, in_memory_db):
        result = run_current_prices(in_memory_db, [], sleep=Mock())
        assert result['chunks_total'] == 0
        assert result['status'] == 'completed'

    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_malformed_chunk_skipped(self, mock_fetch, in_memory_db):
        """Test that a chunk with unusable quotes does not stop the next chunk."""
        def fetch(chunk):
            if 'BAD' in chunk:
                return [{'Ticker': 'BAD', 'Price': 'n/a'}, {'Symbol': 'OTHER', 'Price': 1.0}]
            return _quotes(chunk)
        mock_fetch.side_effect = fetch

        result = run_current_prices(in_memory_db, ['BAD', 'OTHER', 'GOOD'], chunk_size=2, sleep=Mock())

        assert result['status'] == 'completed'
        assert result['chunks_failed'] == 1
        assert result['failed_tickers'] == ['BAD', 'OTHER']
        assert _stored_prices(in_memory_db) == {'GOOD': 100.0}

    @patch('pipeline.current_prices_dag.upsert_current_prices', side_effect=RuntimeError("disk full"))
    @patch('pipeline.current_prices_dag.fetch_current_prices')
    def test_unexpected_error_marks_run_failed(self, mock_fetch, mock_upsert, in_memory_db):
        mock_fetch.side_effect = _quotes

        result = run_current_prices(in_memory_db, ['AAPL'], sleep=Mock())

        assert result['status'] == 'failed'
        assert get_run_status(in_memory_db, result['run_id'])['status'] is RunStatus.FAILED
