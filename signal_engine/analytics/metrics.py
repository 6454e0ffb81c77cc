"""
Trade statistics: win rate, profit factor, expectancy, running drawdown.
Helpers accept a list of PnLs or a list of Trade records.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence, Union

from signal_engine.core.types import Trade

PnlSeries = Union[Sequence[float], Sequence[Trade]]


def _pnls(values: PnlSeries) -> List[float]:
    return [v.pnl if isinstance(v, Trade) else float(v) for v in values]


def win_rate(values: PnlSeries) -> float:
    """Fraction of trades with positive PnL."""
    pnls = _pnls(values)
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(values: PnlSeries) -> float:
    """Gross profit / gross loss. inf when there are wins and no losses."""
    pnls = _pnls(values)
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def expectancy(values: PnlSeries) -> float:
    """Average PnL per trade."""
    pnls = _pnls(values)
    if not pnls:
        return 0.0
    return sum(pnls) / len(pnls)


class DrawdownTracker:
    """Running balance, peak and drawdown as a fraction of peak, updated after each trade."""

    def __init__(self, initial_balance: float):
        self.balance = initial_balance
        self.peak = initial_balance
        self.current = 0.0
        self.max_drawdown = 0.0

    def update(self, pnl: float) -> float:
        """Apply one closed trade; return the drawdown after it."""
        self.balance += pnl
        if self.balance > self.peak:
            self.peak = self.balance
            self.current = 0.0
        else:
            self.current = (self.peak - self.balance) / self.peak if self.peak > 0 else 0.0
            self.max_drawdown = max(self.max_drawdown, self.current)
        return self.current


@dataclass
class TradeStats:
    """Cumulative counters for paper trading and reporting."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    max_drawdown: float = 0.0

    def record(self, pnl: float) -> None:
        self.total_trades += 1
        if pnl > 0:
            self.winning_trades += 1
            self.total_profit += pnl
        else:
            self.losing_trades += 1
            self.total_loss += abs(pnl)

    @property
    def net_pnl(self) -> float:
        return self.total_profit - self.total_loss

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades else 0.0

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "total_profit": self.total_profit,
            "total_loss": self.total_loss,
            "max_drawdown": self.max_drawdown,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TradeStats":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})
