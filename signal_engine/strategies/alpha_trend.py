"""
AlphaTrend crossover strategy used to generate synthetic signals in backtests.
BUY when AlphaTrend turns up, SELL when it turns down.
"""

from __future__ import annotations
import logging
from typing import Optional

import pandas as pd

from signal_engine.core.types import Signal, SignalSide
from signal_engine.indicators import atr, mfi, alpha_trend
from signal_engine.strategies.base import BaseStrategy

logger = logging.getLogger("signal_engine.strategy")


class AlphaTrendStrategy(BaseStrategy):
    """
    ATR and MFI are computed once over the trailing `period` bars ending at `index`
    and reused for the three AlphaTrend points (index, index-1, index-2).
    """

    name = "AlphaTrend"

    def __init__(self, period: int = 14, coeff: float = 1.0):
        self.period = period
        self.coeff = coeff

    def get_signal(self, df: pd.DataFrame, index: int, symbol: str, timeframe: str) -> Optional[Signal]:
        if index < self.period or index >= len(df):
            return None
        window = df.iloc[index - self.period + 1:index + 1]
        atr_value = atr(window, self.period)
        mfi_value = mfi(window, self.period)

        at = alpha_trend(df, index, atr_value, mfi_value, self.coeff)
        at_prev = alpha_trend(df, index - 1, atr_value, mfi_value, self.coeff)
        at_prev2 = alpha_trend(df, index - 2, atr_value, mfi_value, self.coeff)

        if at > at_prev and at_prev <= at_prev2:
            action = SignalSide.LONG
        elif at < at_prev and at_prev >= at_prev2:
            action = SignalSide.SHORT
        else:
            return None

        bar = df.iloc[index]
        logger.debug(
            "%s signal at index %d: AT=%.6f AT-1=%.6f AT-2=%.6f",
            action.value, index, at, at_prev, at_prev2,
        )
        return Signal(
            strategy=self.name,
            action=action,
            symbol=symbol,
            timeframe=timeframe,
            price=float(bar["close"]),
            timestamp=pd.Timestamp(bar["time"]).to_pydatetime(),
            metadata={
                "alpha_trend": at,
                "alpha_trend_prev": at_prev,
                "alpha_trend_prev2": at_prev2,
                "atr": atr_value,
                "mfi": mfi_value,
            },
        )
