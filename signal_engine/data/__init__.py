"""Market data sources."""

from signal_engine.data.base import MarketDataSource
from signal_engine.data.historical import HistoricalMarketData

__all__ = ["MarketDataSource", "HistoricalMarketData"]
