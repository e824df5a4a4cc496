"""
Asset allocation utilities.
Pure functions grouping portfolio assets by type, by value and by count.
"""

from datetime import date
from typing import Dict, List, Optional, Sequence

from analysis.models import Asset, AssetAllocation, TradedAsset, TypeShare, ValuedAsset
from analysis.guardrails import InputShapeError
from analysis.calculations.valuation import holdings_as_of, notional_as_of


def asset_market_value(asset: Asset, on: Optional[date] = None) -> float:
    """
    Market value of one asset from transactions dated on or before `on`.

    Traded: held quantity x current price (0 if no current price is known).
    Valued: signed cumulative buy/sell notional.
    """
    if isinstance(asset, TradedAsset):
        if asset.current_price is None:
            return 0.0
        return holdings_as_of(asset, on) * asset.current_price

    if isinstance(asset, ValuedAsset):
        return notional_as_of(asset, on)

    raise InputShapeError(f"Unknown asset variant: {type(asset).__name__}")


def calculate_allocation_by_type(assets: Sequence[Asset], on: Optional[date] = None) -> List[TypeShare]:
    """
    Percentage of total portfolio value held in each asset type.

    Args:
        assets: Portfolio assets (traded assets should carry their price on `on`)
        on: Valuation date (None = every transaction)

    Returns:
        One TypeShare per type present, in order of first appearance.
        Percentages sum to 100 when total value is positive; all 0 otherwise.
    """
    value_by_type: Dict[str, float] = {}
    for asset in assets:
        key = asset.type.value
        value_by_type[key] = value_by_type.get(key, 0.0) + asset_market_value(asset, on)

    total = sum(value_by_type.values())
    if total <= 0:
        return [TypeShare(type=key, percentage=0.0) for key in value_by_type]

    return [
        TypeShare(type=key, percentage=value / total * 100)
        for key, value in value_by_type.items()
    ]


def count_asset_types(assets: Sequence[Asset]) -> Dict[str, int]:
    """Number of assets per type, independent of value."""
    counts: Dict[str, int] = {}
    for asset in assets:
        key = asset.type.value
        counts[key] = counts.get(key, 0) + 1
    return counts


def calculate_asset_allocation(assets: Sequence[Asset], on: Optional[date] = None) -> AssetAllocation:
    return AssetAllocation(by_type=calculate_allocation_by_type(assets, on))
