"""
Valuation reconstruction.
Rebuilds the portfolio value series from transactions and stored prices.

Quantities and prices are laid out on a pandas date grid and carried forward,
so a missing close for a day simply reuses the last known close.
"""

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from analysis.models import (
    Asset,
    BenchmarkData,
    PriceDataPoint,
    TradedAsset,
    Transaction,
    ValuedAsset,
)
from analysis.guardrails import InputShapeError, validate_asset

logger = logging.getLogger(__name__)


def holdings_as_of(asset: Asset, on: Optional[date] = None) -> float:
    """
    Quantity held after all buys and sells dated on or before `on`.

    Args:
        asset: Traded or valued asset
        on: Cut-off date (None = every transaction)

    Returns:
        Signed quantity; may be negative if more units were sold than bought
    """
    return float(sum(
        txn.signed_quantity for txn in asset.transactions
        if on is None or txn.day <= on
    ))


def notional_as_of(asset: Asset, on: Optional[date] = None) -> float:
    """Signed cumulative buy/sell notional dated on or before `on` (dividends excluded)."""
    return float(sum(
        txn.signed_notional for txn in asset.transactions
        if on is None or txn.day <= on
    ))


def earliest_transaction_date(assets: Sequence[Asset]) -> Optional[date]:
    days = [txn.day for asset in assets for txn in asset.transactions]
    return min(days) if days else None


def _cumulative_on_grid(transactions: Sequence[Transaction], amount, grid: pd.DatetimeIndex) -> pd.Series:
    """Cumulative sum of a per-transaction amount, sampled on the grid (0 before the first flow)."""
    if not transactions:
        return pd.Series(0.0, index=grid)

    flows = pd.Series(
        [float(amount(txn)) for txn in transactions],
        index=pd.DatetimeIndex([pd.Timestamp(txn.day) for txn in transactions])
    )
    running = flows.groupby(level=0).sum().sort_index().cumsum()
    return running.reindex(running.index.union(grid)).ffill().fillna(0.0).reindex(grid)


def _closes_on_grid(records: Sequence[BenchmarkData], grid: pd.DatetimeIndex) -> pd.Series:
    """Most recent close on or before each grid date; NaN before the first close."""
    if not records:
        return pd.Series(float('nan'), index=grid)

    closes = pd.Series(
        [float(r.close) for r in records],
        index=pd.DatetimeIndex([pd.Timestamp(r.date) for r in records])
    )
    # Later records win for a duplicated date
    closes = closes[~closes.index.duplicated(keep='last')].sort_index()
    return closes.reindex(closes.index.union(grid)).ffill().reindex(grid)


def _live_price(asset: TradedAsset, current_prices: Mapping[str, float]) -> Optional[float]:
    price = current_prices.get(asset.symbol)
    if price is None:
        price = asset.current_price
    return price


def live_prices_for(
    quotes: Mapping[str, Tuple[float, datetime]],
    as_of: date,
    today: Optional[date] = None
) -> Dict[str, float]:
    """
    Current quotes that may stand in for the close on `as_of`.

    Every quote applies when `as_of` is today. For a past date only quotes
    fetched on that same day apply; the rest give way to the stored close.
    """
    today = today or date.today()
    if as_of >= today:
        return {ticker: price for ticker, (price, _) in quotes.items()}
    return {
        ticker: price for ticker, (price, updated_at) in quotes.items()
        if updated_at.date() == as_of
    }


def price_assets_as_of(
    assets: Sequence[Asset],
    price_history: Mapping[str, Sequence[BenchmarkData]],
    live_prices: Mapping[str, float],
    as_of: date,
    today: Optional[date] = None
) -> List[Asset]:
    """
    Copy of the assets with each traded asset's current_price set to its price on `as_of`.

    The price is the live quote when one applies, then (today only) the price
    already on the asset, then the last close on or before `as_of`.
    """
    today = today or date.today()
    as_of_grid = pd.DatetimeIndex([pd.Timestamp(as_of)])

    priced: List[Asset] = []
    for asset in assets:
        if isinstance(asset, TradedAsset):
            price = live_prices.get(asset.symbol)
            if price is None and as_of >= today:
                price = asset.current_price
            if price is None:
                close = _closes_on_grid(price_history.get(asset.symbol, ()), as_of_grid).iloc[0]
                price = None if pd.isna(close) else float(close)
            asset = replace(asset, current_price=price)
        priced.append(asset)
    return priced


def asset_values_on_grid(
    asset: Asset,
    grid: pd.DatetimeIndex,
    price_history: Mapping[str, Sequence[BenchmarkData]],
    current_prices: Mapping[str, float],
    as_of: date
) -> pd.Series:
    """
    Value of one asset on every grid date.

    Traded assets: held quantity x carried-forward close, with the live
    price replacing the close on `as_of`. Valued assets: signed notional.
    """
    if isinstance(asset, ValuedAsset):
        return _cumulative_on_grid(asset.transactions, lambda t: t.signed_notional, grid)

    if isinstance(asset, TradedAsset):
        held = _cumulative_on_grid(asset.transactions, lambda t: t.signed_quantity, grid)
        if (held < 0).any():
            first_short = held[held < 0].index[0].date()
            logger.warning(
                f"Asset {asset.id} ({asset.symbol}) has negative holdings from {first_short}; "
                f"value is kept negative"
            )

        prices = _closes_on_grid(price_history.get(asset.symbol, ()), grid)
        live = _live_price(asset, current_prices)
        as_of_ts = pd.Timestamp(as_of)
        if live is not None and as_of_ts in prices.index:
            prices.loc[as_of_ts] = float(live)

        return (held * prices.fillna(0.0)).fillna(0.0)

    raise InputShapeError(f"Unknown asset variant: {type(asset).__name__}")


def portfolio_values_on_grid(
    assets: Sequence[Asset],
    grid: pd.DatetimeIndex,
    price_history: Mapping[str, Sequence[BenchmarkData]],
    current_prices: Mapping[str, float],
    as_of: date
) -> List[PriceDataPoint]:
    """Sum of all asset values on every grid date."""
    total = pd.Series(0.0, index=grid)
    for asset in assets:
        total = total.add(
            asset_values_on_grid(asset, grid, price_history, current_prices, as_of),
            fill_value=0.0
        )
    return [PriceDataPoint(date=ts.date(), value=float(v)) for ts, v in total.items()]


def build_grid(start: date, end: date, step_days: int = 1) -> pd.DatetimeIndex:
    """
    Dates from start to end every `step_days`; `end` is always the last date.
    """
    if not isinstance(step_days, int) or step_days < 1:
        raise InputShapeError(f"step_days must be a positive integer, got {step_days!r}")

    grid = pd.date_range(pd.Timestamp(start), pd.Timestamp(end), freq=f"{step_days}D")
    end_ts = pd.Timestamp(end)
    if len(grid) == 0 or grid[-1] != end_ts:
        grid = grid.append(pd.DatetimeIndex([end_ts]))
    return grid


def reconstruct_value_series(
    assets: Sequence[Asset],
    price_history: Mapping[str, Sequence[BenchmarkData]],
    current_prices: Optional[Mapping[str, float]] = None,
    as_of: Optional[date] = None,
    step_days: int = 1
) -> List[PriceDataPoint]:
    """
    Reconstruct the portfolio value series from transactions and prices.

    Args:
        assets: Portfolio assets with their transactions
        price_history: Symbol -> OHLCV records (only close is used)
        current_prices: Symbol -> live price, applied on `as_of` only
        as_of: Last date of the series (default: today)
        step_days: Grid step (1 = daily, 7 = weekly)

    Returns:
        Ascending PriceDataPoint list from the earliest transaction to `as_of`;
        empty when there are no transactions on or before `as_of`

    Raises:
        InputShapeError: If an asset is malformed or step_days is invalid
    """
    for asset in assets:
        validate_asset(asset)

    as_of = as_of or date.today()
    current_prices = current_prices or {}

    start = earliest_transaction_date(assets)
    if start is None or start > as_of:
        return []

    grid = build_grid(start, as_of, step_days)
    points = portfolio_values_on_grid(assets, grid, price_history, current_prices, as_of)

    logger.debug(f"Reconstructed {len(points)} points for {len(assets)} assets ({start} to {as_of})")

    return points


def value_at_date(
    assets: Sequence[Asset],
    price_history: Mapping[str, Sequence[BenchmarkData]],
    current_prices: Optional[Mapping[str, float]] = None,
    on: Optional[date] = None,
    as_of: Optional[date] = None
) -> float:
    """
    Portfolio value on a single date.

    The live price override applies only when `on` equals `as_of` (default: today).
    """
    on = on or date.today()
    as_of = as_of or date.today()
    current_prices = current_prices or {}

    for asset in assets:
        validate_asset(asset)

    grid = pd.DatetimeIndex([pd.Timestamp(on)])
    return float(sum(
        asset_values_on_grid(asset, grid, price_history, current_prices, as_of).iloc[0]
        for asset in assets
    ))
