"""Analytics: trade statistics and drawdown."""

from signal_engine.analytics.metrics import (
    win_rate,
    profit_factor,
    expectancy,
    DrawdownTracker,
    TradeStats,
)

__all__ = [
    "win_rate",
    "profit_factor",
    "expectancy",
    "DrawdownTracker",
    "TradeStats",
]
