"""
Data Ingestion Module

Handles fetching and validating market data from external sources:
- yfinance for historical OHLCV prices
- yfinance for current prices
"""

__version__ = "0.1.0"
