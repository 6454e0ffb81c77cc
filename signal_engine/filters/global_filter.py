"""
Global market regime: reference symbols (default BTC and ETH) on the higher timeframe,
each classified by last close vs EMA200. Any error rejects the signal.
"""

from __future__ import annotations
import logging
from typing import Dict, List

from signal_engine.core.config import Config
from signal_engine.core.errors import EngineError
from signal_engine.core.types import FilterOutcome, MarketTrend, Signal, SignalSide
from signal_engine.data.base import MarketDataSource
from signal_engine.filters.base import FilterStage
from signal_engine.indicators import ema

logger = logging.getLogger("signal_engine.filters.global")

EMA_PERIOD = 200


def combine_trends(first: MarketTrend, second: MarketTrend) -> MarketTrend:
    """Agreement wins; on conflict the first reference symbol leads."""
    if first == second:
        return first
    if first == MarketTrend.BULLISH and second == MarketTrend.BEARISH:
        return MarketTrend.MIXED_BULLISH
    if first == MarketTrend.BEARISH and second == MarketTrend.BULLISH:
        return MarketTrend.MIXED_BEARISH
    return MarketTrend.NEUTRAL


def preferred_action(trend: MarketTrend):
    if trend in (MarketTrend.BULLISH, MarketTrend.MIXED_BULLISH):
        return SignalSide.LONG
    if trend in (MarketTrend.BEARISH, MarketTrend.MIXED_BEARISH):
        return SignalSide.SHORT
    return None


class GlobalFilter(FilterStage):

    name = "global"
    label = "Global filter"

    def __init__(self, config: Config, market_data: MarketDataSource, bars_limit: int = 250):
        super().__init__()
        self.config = config
        self.market_data = market_data
        self.bars_limit = bars_limit

    def symbol_trend(self, symbol: str) -> dict:
        bars = self.market_data.get_bars(symbol, self.config.global_timeframe, limit=self.bars_limit)
        ema200 = ema(bars, EMA_PERIOD)
        price = float(bars["close"].iloc[-1])
        trend = MarketTrend.BULLISH if price > ema200 else MarketTrend.BEARISH
        distance = (price - ema200) / ema200 * 100 if ema200 else 0.0
        logger.debug("%s %s: price=%.4f ema200=%.4f trend=%s", symbol, self.config.global_timeframe, price, ema200, trend.value)
        return {"symbol": symbol, "price": price, "ema200": ema200, "trend": trend, "distance_percent": round(distance, 2)}

    def check(self, signal: Signal, context: Dict[str, FilterOutcome]) -> FilterOutcome:
        symbols: List[str] = list(self.config.reference_symbols)
        try:
            if len(symbols) < 2:
                raise EngineError("two reference symbols required")
            first = self.symbol_trend(symbols[0])
            second = self.symbol_trend(symbols[1])
        except EngineError as e:
            logger.error("Global filter error: %s", e)
            return self._record(FilterOutcome(False, f"global filter error: {e}"))
        except Exception as e:
            logger.exception("Global filter unexpected error")
            return self._record(FilterOutcome(False, f"global filter error: {e}"))

        market_trend = combine_trends(first["trend"], second["trend"])
        allowed = self.config.trend_compatibility.get(market_trend.value, [])
        passed = signal.action.value in allowed
        preferred = preferred_action(market_trend) == signal.action and market_trend.value.startswith("MIXED")
        details = {
            "market_trend": market_trend.value,
            "trends": {first["symbol"]: first["trend"].value, second["symbol"]: second["trend"].value},
            "signal_action": signal.action.value,
            "preferred": preferred,
        }
        if passed:
            reason = f"{market_trend.value} market allows {signal.action.value}"
            if preferred:
                reason += " (preferred)"
        else:
            reason = f"{market_trend.value} market does not allow {signal.action.value}"
        logger.info("Global trend %s for %s %s: %s", market_trend.value, signal.symbol, signal.action.value, reason)
        return self._record(FilterOutcome(passed, reason, details))
