"""
Data model for the valuation and analytics engine.
Immutable value types - constructed, consumed and discarded per analytics run.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple, Union


class DataSource(str, Enum):
    """Sampling frequency of a value series."""
    DAILY = 'daily'
    WEEKLY = 'weekly'

    @property
    def periods_per_year(self) -> int:
        return 252 if self is DataSource.DAILY else 52

    @property
    def month_window(self) -> int:
        return 21 if self is DataSource.DAILY else 4

    @property
    def year_window(self) -> int:
        return self.periods_per_year


def as_data_source(value: Union["DataSource", str]) -> DataSource:
    """Accept either the enum or its string value ('daily' / 'weekly')."""
    return value if isinstance(value, DataSource) else DataSource(value)


class TransactionType(str, Enum):
    BUY = 'buy'
    SELL = 'sell'
    DIVIDEND = 'dividend'


class AssetType(str, Enum):
    STOCK = 'stock'
    BOND = 'bond'
    COMMODITY = 'commodity'
    REAL_ESTATE = 'real estate'
    CASH = 'cash'
    CRYPTO = 'crypto'
    OTHER = 'other'


@dataclass(frozen=True)
class PriceDataPoint:
    """Marked value of a position or portfolio on a date."""
    date: date
    value: float


@dataclass(frozen=True)
class ReturnDataPoint:
    """Period return, dated at the later of the two points that produced it."""
    date: date
    return_value: float


@dataclass(frozen=True)
class Transaction:
    asset_id: str
    type: TransactionType
    date: Union[date, datetime]
    quantity: Optional[float] = None
    price: Optional[float] = None
    fees: Optional[float] = None
    notes: Optional[str] = None

    @property
    def day(self) -> date:
        """Calendar day of the transaction (timestamps are truncated)."""
        if isinstance(self.date, datetime):
            return self.date.date()
        return self.date

    @property
    def signed_quantity(self) -> float:
        """Quantity change caused by this transaction (dividends change nothing)."""
        if self.type is TransactionType.BUY:
            return self.quantity or 0.0
        if self.type is TransactionType.SELL:
            return -(self.quantity or 0.0)
        return 0.0

    @property
    def signed_notional(self) -> float:
        """Signed quantity times price, the value a buy adds or a sell removes."""
        return self.signed_quantity * (self.price or 0.0)


@dataclass(frozen=True)
class TradedAsset:
    """Asset priced by market symbol lookup."""
    id: str
    symbol: str
    type: AssetType
    transactions: Tuple[Transaction, ...] = ()
    current_price: Optional[float] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ValuedAsset:
    """Asset without a market symbol (cash, real estate...), valued at its transaction notional."""
    id: str
    type: AssetType
    transactions: Tuple[Transaction, ...] = ()
    name: Optional[str] = None


Asset = Union[TradedAsset, ValuedAsset]


@dataclass(frozen=True)
class BenchmarkData:
    """OHLCV record for a reference index. Only close is used."""
    date: date
    ticker: str
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


# Historical and benchmark prices share the same OHLCV shape.
PriceRecord = BenchmarkData


@dataclass(frozen=True)
class ValueAtRisk:
    daily: float
    monthly: float


@dataclass(frozen=True)
class TypeShare:
    type: str
    percentage: float


@dataclass(frozen=True)
class DrawdownPeriod:
    max_drawdown: float
    peak_date: date
    trough_date: date
    recovery_date: Optional[date]
    drawdown_periods: int
    recovery_periods: Optional[int]


@dataclass(frozen=True)
class RiskMetrics:
    volatility: float
    max_drawdown: float
    beta: float
    value_at_risk: ValueAtRisk
    sharpe_ratio: float
    downside_deviation: float
    asset_diversification: List[TypeShare]
    max_drawdown_period: Optional[DrawdownPeriod] = None


@dataclass(frozen=True)
class PeriodReturn:
    start_date: date
    end_date: date
    return_value: float


@dataclass(frozen=True)
class MonthlyReturn:
    month: str
    return_value: float


@dataclass(frozen=True)
class BestWorstPeriods:
    best_month: Optional[PeriodReturn]
    worst_month: Optional[PeriodReturn]
    best_year: Optional[PeriodReturn]
    worst_year: Optional[PeriodReturn]


@dataclass(frozen=True)
class PerformanceMetrics:
    total_return: float
    time_weighted_return: float
    annualized_return: float
    monthly_returns: List[MonthlyReturn]
    ytd_return: float
    rolling_returns: Dict[str, float]
    best_worst_periods: BestWorstPeriods
    alpha: float
    win_rate: float


@dataclass(frozen=True)
class MarketCapture:
    up_capture: float
    down_capture: float


@dataclass(frozen=True)
class YearlyComparison:
    year: int
    portfolio_return: float
    benchmark_return: float
    outperformance: float


@dataclass(frozen=True)
class BenchmarkComparisons:
    cumulative_outperformance: float
    tracking_error: float
    market_capture: MarketCapture
    information_ratio: float
    correlation: float
    yearly_comparison: List[YearlyComparison]


@dataclass(frozen=True)
class AssetAllocation:
    by_type: List[TypeShare]


@dataclass(frozen=True)
class AnalyticsMetadata:
    calculated_at: datetime
    data_points: int
    data_source: DataSource
    date_range: Dict[str, Optional[date]]
    asset_count: int
    asset_types: Dict[str, int]
    benchmark_ticker: Optional[str] = None
    data_quality_notes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AnalyticsResult:
    """Composite engine output. A pure function of its inputs."""
    risk_metrics: RiskMetrics
    performance_metrics: PerformanceMetrics
    benchmark_comparisons: BenchmarkComparisons
    asset_allocation: AssetAllocation
    metadata: AnalyticsMetadata

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dict, JSON-serializable with ``default=str``."""
        return _plain(asdict(self))

    def statistics(self) -> Dict[str, Any]:
        """Everything except ``metadata.calculated_at``, for comparing runs."""
        payload = self.to_dict()
        payload['metadata'].pop('calculated_at', None)
        return payload


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
