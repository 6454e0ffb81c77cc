"""
Local confirmation on the signal's own symbol and timeframe.
Four sub-checks, all evaluated and all required: EMA200 trend (with tolerance band),
ADX14 trend strength, relative volume, Bollinger band width.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict

import pandas as pd

from signal_engine.core.config import Config
from signal_engine.core.errors import EngineError, InsufficientData
from signal_engine.core.types import FilterOutcome, Signal, SignalSide
from signal_engine.data.base import MarketDataSource
from signal_engine.filters.base import FilterStage
from signal_engine.indicators import adx, bollinger_width, ema, relative_volume

logger = logging.getLogger("signal_engine.filters.local")


class LocalFilter(FilterStage):

    name = "local"
    label = "Local filter"

    def __init__(self, config: Config, market_data: MarketDataSource):
        super().__init__()
        self.config = config
        self.market_data = market_data

    def check_ema_trend(self, bars: pd.DataFrame, action: SignalSide) -> dict:
        ema200 = ema(bars, 200)
        price = float(bars["close"].iloc[-1])
        above = price > ema200
        trend = "BULLISH" if above else "BEARISH"
        distance = abs(price - ema200) / ema200 * 100 if ema200 else 0.0
        tolerance = self.config.ema_tolerance_percent
        near = distance < tolerance
        passed = (above or near) if action == SignalSide.LONG else (not above or near)
        if passed:
            reason = f"EMA200 trend compatible ({trend}, distance {distance:.2f}%)"
        else:
            reason = f"EMA200 trend incompatible: signal {action.value}, trend {trend}"
        return {"passed": passed, "reason": reason, "value": ema200, "price": price,
                "trend": trend, "distance_percent": round(distance, 2)}

    def check_adx(self, bars: pd.DataFrame, action: SignalSide) -> dict:
        value = adx(bars, 14)
        threshold = self.config.adx_threshold
        passed = value > threshold
        op = ">" if passed else "<="
        return {"passed": passed, "reason": f"ADX14 {value:.2f} {op} {threshold}", "value": value, "threshold": threshold}

    def check_relative_volume(self, bars: pd.DataFrame, action: SignalSide) -> dict:
        value = relative_volume(bars, 20)
        threshold = self.config.rvol_threshold
        passed = value > threshold
        op = ">" if passed else "<="
        return {"passed": passed, "reason": f"rVOL {value:.2f} {op} {threshold}", "value": value, "threshold": threshold}

    def check_bollinger_width(self, bars: pd.DataFrame, action: SignalSide) -> dict:
        value = bollinger_width(bars, 20, 2)
        threshold = self.config.bb_width_threshold
        passed = value > threshold
        op = ">" if passed else "<="
        return {"passed": passed, "reason": f"BB width {value:.4f} {op} {threshold}", "value": value, "threshold": threshold}

    def _sub_checks(self) -> Dict[str, Callable[[pd.DataFrame, SignalSide], dict]]:
        return {
            "ema200": self.check_ema_trend,
            "adx14": self.check_adx,
            "relative_volume": self.check_relative_volume,
            "bollinger_width": self.check_bollinger_width,
        }

    def check(self, signal: Signal, context: Dict[str, FilterOutcome]) -> FilterOutcome:
        try:
            bars = self.market_data.get_bars(signal.symbol, signal.timeframe, limit=self.config.local_bars_limit)
        except EngineError as e:
            logger.error("Local filter data error for %s: %s", signal.symbol, e)
            return self._record(FilterOutcome(False, f"local filter error: {e}"))
        except Exception as e:
            logger.exception("Local filter unexpected error for %s", signal.symbol)
            return self._record(FilterOutcome(False, f"local filter error: {e}"))

        results: Dict[str, dict] = {}
        for name, fn in self._sub_checks().items():
            try:
                results[name] = fn(bars, signal.action)
            except InsufficientData as e:
                results[name] = {"passed": False, "reason": f"insufficient data: {e}", "value": None}
            except Exception as e:
                logger.exception("Local sub-check %s failed", name)
                results[name] = {"passed": False, "reason": f"calculation error: {e}", "value": None}

        failed = [name for name, r in results.items() if not r["passed"]]
        if not failed:
            outcome = FilterOutcome(True, "all local checks passed", results)
        else:
            reason = "failed checks: " + ", ".join(f"{name}: {results[name]['reason']}" for name in failed)
            outcome = FilterOutcome(False, reason, results)
        logger.info("Local filters %s %s: %s", signal.symbol, signal.action.value, outcome.reason)
        return self._record(outcome, failed)
