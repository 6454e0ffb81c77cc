"""Abstract market data source: OHLCV bars by symbol and timeframe."""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd


class MarketDataSource(ABC):

    @abstractmethod
    def get_bars(
        self,
        symbol: str,
        timeframe: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """
        Return OHLCV DataFrame with columns: time, open, high, low, close, volume,
        ordered ascending by time. Either the latest `limit` bars or the [start, end] range.
        Raises DataUnavailable when the fetch fails.
        """
        pass
