"""
Core data types for bars, signals, filter outcomes, orders, positions and trades.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd


BAR_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


class SignalSide(str, Enum):
    LONG = "BUY"
    SHORT = "SELL"

    @property
    def opposite(self) -> "SignalSide":
        return SignalSide.SHORT if self is SignalSide.LONG else SignalSide.LONG


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class MarketTrend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    MIXED_BULLISH = "MIXED_BULLISH"
    MIXED_BEARISH = "MIXED_BEARISH"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class Bar:
    """OHLCV candle."""
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """Build the standard OHLCV frame (time, open, high, low, close, volume) from bars."""
    return pd.DataFrame(
        [[b.time, b.open, b.high, b.low, b.close, b.volume] for b in bars],
        columns=BAR_COLUMNS,
    )


@dataclass(frozen=True)
class Signal:
    """Instruction to consider opening a position. Never mutated."""
    strategy: str
    action: SignalSide
    symbol: str
    timeframe: str
    price: float
    timestamp: datetime
    metadata: dict = field(default_factory=dict)


@dataclass
class FilterOutcome:
    """Result of one filter stage."""
    passed: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False

    @classmethod
    def skip(cls) -> "FilterOutcome":
        return cls(passed=False, reason="skipped", skipped=True)


@dataclass
class ProcessResult:
    """Aggregated pipeline decision. One outcome per stage: global, local, ai."""
    signal: Signal
    approved: bool
    reason: str
    filter_results: Dict[str, FilterOutcome] = field(default_factory=dict)
    processing_time_ms: float = 0.0


@dataclass(frozen=True)
class TradeParams:
    """Order parameters derived from an approved signal (or a reduce-only close)."""
    symbol: str
    side: SignalSide
    order_type: OrderType
    quantity: float
    entry_price: float
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    time_in_force: str = "GTC"
    reduce_only: bool = False


@dataclass
class TrailingState:
    highest_price: float
    lowest_price: float
    current_stop_price: float


@dataclass
class DcaState:
    steps: int = 0
    last_dca_price: float = 0.0
    base_quantity: float = 0.0


@dataclass
class Position:
    """Open trade tracked by the lifecycle manager."""
    id: str
    symbol: str
    side: SignalSide
    entry_price: float
    quantity: float
    stop_price: float
    take_profit_price: float
    trailing: TrailingState
    dca: DcaState
    remaining_quantity: float
    status: PositionStatus = PositionStatus.OPEN
    partial_executed: bool = False
    auto_close_deadline: Optional[datetime] = None
    child_order_ids: List[str] = field(default_factory=list)
    realized_pnl: float = 0.0
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    close_reason: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def pnl_at(self, price: float, quantity: Optional[float] = None) -> float:
        qty = self.remaining_quantity if quantity is None else quantity
        if self.side is SignalSide.LONG:
            return (price - self.entry_price) * qty
        return (self.entry_price - price) * qty


@dataclass(frozen=True)
class ClosureEvent:
    """Emitted exactly once when a position closes."""
    position_id: str
    symbol: str
    side: SignalSide
    entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    reason: str
    closed_at: datetime
    opened_at: Optional[datetime] = None


@dataclass
class Trade:
    """Closed trade for analytics, backtests and the paper trading history."""
    symbol: str
    side: SignalSide
    quantity: float
    entry_price: float
    exit_price: float
    pnl: float
    entry_time: Optional[datetime]
    exit_time: Optional[datetime]
    exit_reason: str  # "TP_HIT" | "SL_HIT" | "END_OF_DATA" | "trailing_stop" | "auto_timeout" | "manual"
    take_profit_price: Optional[float] = None
    stop_price: Optional[float] = None
    balance: float = 0.0
    drawdown: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["side"] = self.side.value
        data["entry_time"] = _iso(self.entry_time)
        data["exit_time"] = _iso(self.exit_time)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Trade":
        data = dict(data)
        data["side"] = SignalSide(data["side"])
        for key in ("entry_time", "exit_time"):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    return value.isoformat()
