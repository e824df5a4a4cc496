"""
Analysis Engine Module

Values a portfolio over time and calculates its analytics:
- Value series reconstruction from transactions and stored closes
- Returns (time-weighted, annualized, rolling, monthly, YTD)
- Risk (volatility, drawdown, beta, VaR, Sharpe, downside deviation)
- Benchmark comparisons and asset allocation
"""

__version__ = "0.1.0"
