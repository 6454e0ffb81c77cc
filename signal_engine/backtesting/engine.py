"""
Backtest simulator: replays AlphaTrend signals over historical bars through the
same filter pipeline the live engine uses, with no lookahead.

Filters only see bars, on every symbol and timeframe, that had closed by the
close of the bar being replayed. Approved signals enter
at that bar's close and exit on the first later candle that crosses TP or SL
(TP checked first), or at the last close (END_OF_DATA).
"""

from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from signal_engine.analytics.metrics import DrawdownTracker, expectancy, profit_factor
from signal_engine.core.config import Config
from signal_engine.core.errors import DataUnavailable
from signal_engine.core.types import SignalSide, Trade
from signal_engine.data.base import MarketDataSource
from signal_engine.data.historical import HistoricalMarketData
from signal_engine.filters.pipeline import SignalFilterPipeline, build_pipeline
from signal_engine.strategies.alpha_trend import AlphaTrendStrategy
from signal_engine.strategies.base import BaseStrategy
from signal_engine.trading.params import calculate_trade_params
from signal_engine.utils.timeframes import timeframe_delta

logger = logging.getLogger("signal_engine.backtest")

PipelineFactory = Callable[[Config, MarketDataSource], SignalFilterPipeline]

TP_HIT = "TP_HIT"
SL_HIT = "SL_HIT"
END_OF_DATA = "END_OF_DATA"

# reference series are fetched this many bars early so EMA200 is warm at the first bar
REFERENCE_WARMUP_BARS = 250


@dataclass
class BacktestResult:
    """Backtest output: signal counts, closed trades, stats per filter stage."""
    symbol: str
    timeframe: str
    initial_balance: float
    final_balance: float = 0.0
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total_signals: int = 0
    approved_signals: int = 0
    rejected_signals: int = 0
    trades: List[Trade] = field(default_factory=list)
    win_rate: float = 0.0
    total_profit: float = 0.0
    total_loss: float = 0.0
    max_drawdown: float = 0.0
    filter_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        pf = profit_factor(self.trades)
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
            "total_signals": self.total_signals,
            "approved_signals": self.approved_signals,
            "rejected_signals": self.rejected_signals,
            "total_trades": len(self.trades),
            "win_rate": self.win_rate,
            "total_profit": self.total_profit,
            "total_loss": self.total_loss,
            "max_drawdown": self.max_drawdown,
            "profit_factor": pf if math.isfinite(pf) else None,
            "expectancy": expectancy(self.trades),
            "filter_stats": self.filter_stats,
            "trades": [t.to_dict() for t in self.trades],
        }


def resolve_exit(
    frame: pd.DataFrame,
    entry_index: int,
    side: SignalSide,
    take_profit: float,
    stop: float,
) -> Tuple[float, str, int]:
    """
    Scan candles after entry_index. TP is checked before SL on each candle, so a
    candle that spans both resolves as TP_HIT. Returns (exit_price, reason, exit_index).
    """
    highs = frame["high"].to_numpy(dtype=float)
    lows = frame["low"].to_numpy(dtype=float)
    for i in range(entry_index + 1, len(frame)):
        if side == SignalSide.LONG:
            if highs[i] >= take_profit:
                return take_profit, TP_HIT, i
            if lows[i] <= stop:
                return stop, SL_HIT, i
        else:
            if lows[i] <= take_profit:
                return take_profit, TP_HIT, i
            if highs[i] >= stop:
                return stop, SL_HIT, i
    last = len(frame) - 1
    return float(frame["close"].iloc[last]), END_OF_DATA, last


def _to_datetime(value) -> datetime:
    return pd.Timestamp(value).to_pydatetime()


class BacktestSimulator:
    """
    Single threaded and deterministic. Each run builds its own HistoricalMarketData
    and pipeline, so nothing is shared with a live engine.
    """

    def __init__(
        self,
        config: Config,
        pipeline_factory: Optional[PipelineFactory] = None,
        strategy: Optional[BaseStrategy] = None,
        initial_balance: float = 1000.0,
        usdt_per_trade: Optional[float] = None,
    ):
        self.config = config
        self.pipeline_factory = pipeline_factory or build_pipeline
        self.strategy = strategy or AlphaTrendStrategy()
        self.initial_balance = initial_balance
        self.usdt_per_trade = usdt_per_trade

    def load(
        self,
        source: MarketDataSource,
        symbol: str,
        timeframe: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[pd.DataFrame, Dict[str, pd.DataFrame]]:
        """
        Fetch the traded series and the reference series for the global filter.
        DataUnavailable propagates and aborts the run.
        """
        frame = source.get_bars(symbol, timeframe, start=start, end=end)
        if frame.empty:
            raise DataUnavailable(f"No historical bars for {symbol} {timeframe}")
        references = {}
        ref_start = None
        if start is not None:
            ref_start = start - timeframe_delta(self.config.global_timeframe) * REFERENCE_WARMUP_BARS
        for ref in self.config.reference_symbols:
            references[ref] = source.get_bars(ref, self.config.global_timeframe, start=ref_start, end=end)
        logger.info("Loaded %d bars for %s %s and %d reference series", len(frame), symbol, timeframe, len(references))
        return frame, references

    def run_range(
        self,
        source: MarketDataSource,
        symbol: str,
        timeframe: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> BacktestResult:
        frame, references = self.load(source, symbol, timeframe, start, end)
        return self.run(frame, symbol, timeframe, references)

    def run(
        self,
        frame: pd.DataFrame,
        symbol: str,
        timeframe: str,
        reference_frames: Optional[Dict[str, pd.DataFrame]] = None,
    ) -> BacktestResult:
        if frame.empty:
            raise DataUnavailable(f"No historical bars for {symbol} {timeframe}")
        frame = frame.sort_values("time").reset_index(drop=True)
        market_data = HistoricalMarketData()
        market_data.add(symbol, frame, timeframe)
        for ref, ref_frame in (reference_frames or {}).items():
            market_data.add(ref, ref_frame, self.config.global_timeframe)
        pipeline = self.pipeline_factory(self.config, market_data)

        usdt = self.usdt_per_trade if self.usdt_per_trade is not None else self.config.default_usdt_amount
        result = BacktestResult(
            symbol=symbol,
            timeframe=timeframe,
            initial_balance=self.initial_balance,
            start=_to_datetime(frame["time"].iloc[0]),
            end=_to_datetime(frame["time"].iloc[-1]),
            filter_stats={stage.name: {"passed": 0, "failed": 0} for stage in pipeline.stages},
        )
        drawdown = DrawdownTracker(self.initial_balance)
        bar_duration = timeframe_delta(timeframe)
        logger.info("Backtest started: %s %s, %d bars", symbol, timeframe, len(frame))

        for i in range(len(frame)):
            signal = self.strategy.get_signal(frame, i, symbol, timeframe)
            if signal is None:
                continue
            # the signal fires at this bar's close
            market_data.advance_to(frame["time"].iloc[i] + bar_duration)
            processed = pipeline.process(signal)
            result.total_signals += 1
            for name, outcome in processed.filter_results.items():
                if outcome.skipped:
                    continue
                counters = result.filter_stats.setdefault(name, {"passed": 0, "failed": 0})
                counters["passed" if outcome.passed else "failed"] += 1
            if not processed.approved:
                result.rejected_signals += 1
                continue
            result.approved_signals += 1

            params = calculate_trade_params(
                signal, usdt, self.config.default_tp_percent, self.config.default_sl_percent,
            )
            exit_price, reason, exit_index = resolve_exit(
                frame, i, params.side, params.take_profit_price, params.stop_price,
            )
            if params.side == SignalSide.LONG:
                pnl = (exit_price - params.entry_price) * params.quantity
            else:
                pnl = (params.entry_price - exit_price) * params.quantity
            current_drawdown = drawdown.update(pnl)
            if pnl > 0:
                result.total_profit += pnl
            else:
                result.total_loss += abs(pnl)
            result.trades.append(Trade(
                symbol=symbol,
                side=params.side,
                quantity=params.quantity,
                entry_price=params.entry_price,
                exit_price=exit_price,
                pnl=pnl,
                entry_time=signal.timestamp,
                exit_time=_to_datetime(frame["time"].iloc[exit_index]),
                exit_reason=reason,
                take_profit_price=params.take_profit_price,
                stop_price=params.stop_price,
                balance=drawdown.balance,
                drawdown=current_drawdown,
            ))
            logger.info("Backtest trade %s %s @ %.6f -> %.6f %s pnl=%.4f",
                        symbol, params.side.value, params.entry_price, exit_price, reason, pnl)

        market_data.advance_to(None)
        wins = sum(1 for t in result.trades if t.pnl > 0)
        result.win_rate = wins / len(result.trades) if result.trades else 0.0
        result.max_drawdown = drawdown.max_drawdown
        result.final_balance = drawdown.balance
        logger.info(
            "Backtest done: %d signals, %d approved, %d trades, win rate %.1f%%, max drawdown %.2f%%",
            result.total_signals, result.approved_signals, len(result.trades),
            result.win_rate * 100, result.max_drawdown * 100,
        )
        return result


def save_results(result: BacktestResult, path: Path, config: Optional[Config] = None) -> Path:
    """Write the JSON report (with the settings used) to path."""
    data = result.to_dict()
    data["timestamp"] = datetime.now(timezone.utc).isoformat()
    if config is not None:
        data["config"] = {
            "usdt_per_trade": config.default_usdt_amount,
            "tp_percent": config.default_tp_percent,
            "sl_percent": config.default_sl_percent,
            "adx_threshold": config.adx_threshold,
            "rvol_threshold": config.rvol_threshold,
            "bb_width_threshold": config.bb_width_threshold,
            "ai_enabled": config.ai_enabled,
        }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)
    logger.info("Backtest results saved to %s", path)
    return path
