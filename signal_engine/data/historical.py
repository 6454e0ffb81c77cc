"""
In-memory market data with a time cursor. The backtest moves the cursor bar by bar
so filters only ever see bars that had closed by the end of the bar being replayed.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

import pandas as pd

from signal_engine.core.errors import DataUnavailable
from signal_engine.data.base import MarketDataSource
from signal_engine.utils.timeframes import timeframe_delta


class HistoricalMarketData(MarketDataSource):
    """Frames are registered per symbol, optionally per (symbol, timeframe)."""

    def __init__(self, frames: Optional[Dict[str, pd.DataFrame]] = None):
        self._frames: Dict[Tuple[str, Optional[str]], pd.DataFrame] = {}
        self._durations: Dict[Tuple[str, Optional[str]], timedelta] = {}
        self._cursor: Optional[pd.Timestamp] = None
        for symbol, frame in (frames or {}).items():
            self.add(symbol, frame)

    def add(self, symbol: str, frame: pd.DataFrame, timeframe: Optional[str] = None) -> None:
        ordered = frame.sort_values("time").reset_index(drop=True)
        self._frames[(symbol, timeframe)] = ordered
        if timeframe is not None:
            self._durations[(symbol, timeframe)] = timeframe_delta(timeframe)

    def advance_to(self, time: Optional[datetime]) -> None:
        """
        Move the cursor to a point in time. Only bars whose close (open time plus
        bar duration) is at or before it are visible. None removes the bound.
        """
        self._cursor = None if time is None else pd.Timestamp(time)

    @property
    def cursor(self) -> Optional[pd.Timestamp]:
        return self._cursor

    def get_bars(
        self,
        symbol: str,
        timeframe: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        key = (symbol, timeframe)
        if key not in self._frames:
            key = (symbol, None)
        frame = self._frames.get(key)
        if frame is None:
            raise DataUnavailable(f"No bars loaded for {symbol} {timeframe}")
        mask = pd.Series(True, index=frame.index)
        if self._cursor is not None:
            duration = self._durations.get(key) or timeframe_delta(timeframe)
            mask &= frame["time"] + duration <= self._cursor
        if start is not None:
            mask &= frame["time"] >= pd.Timestamp(start)
        if end is not None:
            mask &= frame["time"] <= pd.Timestamp(end)
        bars = frame[mask]
        if limit is not None:
            bars = bars.tail(limit)
        return bars.reset_index(drop=True)
