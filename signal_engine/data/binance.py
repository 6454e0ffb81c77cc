"""
Binance USDT-M Futures klines as a market data source.
"""

from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

import pandas as pd

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from signal_engine.core.errors import DataUnavailable
from signal_engine.core.types import BAR_COLUMNS
from signal_engine.data.base import MarketDataSource
from signal_engine.execution.binance_futures import retry_on_rate_limit

logger = logging.getLogger("signal_engine.data.binance")

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore",
]


def klines_to_frame(raw: List[list]) -> pd.DataFrame:
    """Raw kline rows -> standard OHLCV frame."""
    df = pd.DataFrame(raw, columns=KLINE_COLUMNS)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    df["time"] = pd.to_datetime(df["open_time"], unit="ms")
    return df[BAR_COLUMNS].sort_values("time").reset_index(drop=True)


def _ms(value: datetime) -> int:
    return int(pd.Timestamp(value).timestamp() * 1000)


class BinanceMarketData(MarketDataSource):
    """
    Latest `limit` bars via futures_klines, date ranges via futures_historical_klines
    (python-binance pages through the range itself).
    """

    def __init__(self, client: Client, default_limit: int = 250):
        self._client = client
        self.default_limit = default_limit

    @classmethod
    def from_keys(cls, api_key: str = "", api_secret: str = "", testnet: bool = False) -> "BinanceMarketData":
        return cls(Client(api_key or None, api_secret or None, testnet=testnet))

    def get_bars(
        self,
        symbol: str,
        timeframe: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        try:
            if start is not None:
                raw = self._historical(symbol, timeframe, start, end)
            else:
                raw = self._latest(symbol, timeframe, limit or self.default_limit)
        except (BinanceAPIException, BinanceRequestException) as e:
            logger.error("Kline fetch failed for %s %s: %s", symbol, timeframe, e)
            raise DataUnavailable(f"Market data unavailable for {symbol}: {e}") from e
        except Exception as e:
            logger.exception("Kline fetch error for %s %s", symbol, timeframe)
            raise DataUnavailable(f"Market data unavailable for {symbol}: {e}") from e
        if not raw:
            raise DataUnavailable(f"No bars returned for {symbol} {timeframe}")
        df = klines_to_frame(raw)
        if limit is not None and start is not None:
            df = df.tail(limit).reset_index(drop=True)
        logger.debug("Fetched %d bars %s %s", len(df), symbol, timeframe)
        return df

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def _latest(self, symbol: str, timeframe: str, limit: int) -> List[list]:
        return self._client.futures_klines(symbol=symbol, interval=timeframe, limit=limit)

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def _historical(self, symbol: str, timeframe: str, start: datetime, end: Optional[datetime]) -> List[list]:
        return self._client.futures_historical_klines(
            symbol=symbol,
            interval=timeframe,
            start_str=_ms(start),
            end_str=_ms(end) if end is not None else None,
        )
