"""Unit tests for backtesting.engine."""

import json
from datetime import timedelta

import pytest

from signal_engine.backtesting.engine import (
    END_OF_DATA, SL_HIT, TP_HIT, BacktestSimulator, resolve_exit, save_results,
)
from signal_engine.core.config import Config
from signal_engine.core.errors import DataUnavailable
from signal_engine.core.types import FilterOutcome, SignalSide
from signal_engine.data.historical import HistoricalMarketData
from signal_engine.filters.base import FilterStage
from signal_engine.filters.pipeline import SignalFilterPipeline
from signal_engine.strategies.alpha_trend import AlphaTrendStrategy
from conftest import crossover_frame, make_frame


class ApproveAll(FilterStage):
    name = "approve"
    label = "Approve"

    def __init__(self, market_data):
        super().__init__()
        self.market_data = market_data
        self.visible = []

    def check(self, signal, context):
        bars = self.market_data.get_bars(signal.symbol, signal.timeframe)
        self.visible.append(bars["time"].iloc[-1])
        return self._record(FilterOutcome(True, "ok"))


def approving_factory(stages):
    def factory(config, market_data):
        stage = ApproveAll(market_data)
        stages.append(stage)
        return SignalFilterPipeline([stage])
    return factory


def test_resolve_exit_checks_take_profit_first():
    frame = make_frame([100.0, 100.0], highs=[100.0, 101.2], lows=[100.0, 98.5])
    assert resolve_exit(frame, 0, SignalSide.LONG, 101.0, 99.0) == (101.0, TP_HIT, 1)


def test_resolve_exit_short_tie_break():
    frame = make_frame([100.0, 100.0], highs=[100.0, 101.5], lows=[100.0, 98.8])
    assert resolve_exit(frame, 0, SignalSide.SHORT, 99.0, 101.0) == (99.0, TP_HIT, 1)


def test_resolve_exit_stop_loss():
    frame = make_frame([100.0, 99.5, 98.0], highs=[100.0, 100.5, 99.0], lows=[100.0, 99.2, 97.5])
    assert resolve_exit(frame, 0, SignalSide.LONG, 101.0, 99.0) == (99.0, SL_HIT, 2)


def test_resolve_exit_end_of_data():
    frame = make_frame([100.0, 100.2, 100.4])
    price, reason, index = resolve_exit(frame, 0, SignalSide.LONG, 105.0, 95.0)
    assert (price, reason, index) == (100.4, END_OF_DATA, 2)


def test_crossover_scenario_with_approving_filters():
    stages = []
    simulator = BacktestSimulator(Config(), pipeline_factory=approving_factory(stages), usdt_per_trade=10.0)
    frame = crossover_frame()
    result = simulator.run(frame, "ETHUSDT", "15m")

    assert result.total_signals == 1
    assert result.approved_signals == 1
    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.side == SignalSide.LONG
    assert trade.entry_price == 105.0
    assert trade.exit_reason == TP_HIT
    assert trade.exit_price == pytest.approx(105.525)
    assert trade.pnl == pytest.approx(0.525 * 10 / 105)
    assert result.win_rate == 1.0
    assert result.total_profit == pytest.approx(trade.pnl)
    assert result.final_balance == pytest.approx(1000 + trade.pnl)
    assert result.filter_stats == {"approve": {"passed": 1, "failed": 0}}
    # the filter saw bar 15 as the latest bar
    assert stages[0].visible == [frame["time"].iloc[15]]


def test_crossover_scenario_with_default_filters():
    result = BacktestSimulator(Config()).run(crossover_frame(), "ETHUSDT", "15m")
    assert result.total_signals == 1
    assert result.approved_signals == 0
    assert result.rejected_signals == 1
    assert result.trades == []
    assert result.filter_stats["global"] == {"passed": 0, "failed": 1}
    assert result.filter_stats["local"] == {"passed": 0, "failed": 0}


def test_strategy_signal_metadata():
    signal = AlphaTrendStrategy().get_signal(crossover_frame(), 15, "ETHUSDT", "15m")
    assert signal.action == SignalSide.LONG
    assert signal.price == 105.0
    assert signal.metadata["alpha_trend"] == pytest.approx(104 - 30 / 14)
    assert signal.metadata["alpha_trend_prev"] == 100.0
    assert signal.metadata["mfi"] == 100.0
    assert AlphaTrendStrategy().get_signal(crossover_frame(), 13, "ETHUSDT", "15m") is None


def test_drawdown_tracked_across_trades():
    # the crossover at bar 15 is stopped out on bar 16
    closes = [100.0] * 15 + [105.0, 104.0] + [100.0] * 14 + [105.0, 105.0]
    highs = [101.0] * 15 + [106.0, 104.2] + [101.0] * 14 + [106.0, 105.1]
    lows = [99.0] * 15 + [104.0, 103.0] + [99.0] * 14 + [104.0, 104.9]
    frame = make_frame(closes, highs=highs, lows=lows)
    result = BacktestSimulator(Config(), pipeline_factory=approving_factory([]), usdt_per_trade=100.0).run(
        frame, "ETHUSDT", "15m")
    losing = [t for t in result.trades if t.pnl < 0]
    assert losing
    assert result.max_drawdown > 0
    assert result.total_loss == pytest.approx(sum(-t.pnl for t in losing))
    assert result.max_drawdown == pytest.approx(max(t.drawdown for t in result.trades))


def test_empty_history_aborts():
    with pytest.raises(DataUnavailable):
        BacktestSimulator(Config()).run(make_frame([]), "ETHUSDT", "15m")


def test_run_range_missing_symbol_aborts():
    with pytest.raises(DataUnavailable):
        BacktestSimulator(Config()).run_range(HistoricalMarketData(), "ETHUSDT", "15m")


def test_run_range_loads_reference_series():
    data = HistoricalMarketData({"ETHUSDT": crossover_frame(), "BTCUSDT": crossover_frame()})
    simulator = BacktestSimulator(Config(reference_symbols=["BTCUSDT", "ETHUSDT"]))
    frame, references = simulator.load(data, "ETHUSDT", "15m")
    assert len(frame) == 20
    assert set(references) == {"BTCUSDT", "ETHUSDT"}


def test_save_results(tmp_path):
    result = BacktestSimulator(Config(), pipeline_factory=approving_factory([])).run(
        crossover_frame(), "ETHUSDT", "15m")
    path = save_results(result, tmp_path / "out" / "backtest.json", Config())
    data = json.loads(path.read_text())
    assert data["total_signals"] == 1
    assert data["trades"][0]["exit_reason"] == "TP_HIT"
    assert data["config"]["tp_percent"] == 0.5
    assert data["profit_factor"] is None


def test_reference_series_fetched_with_warmup():
    calls = []

    class Recording(HistoricalMarketData):
        def get_bars(self, symbol, timeframe, limit=None, start=None, end=None):
            calls.append((symbol, timeframe, start))
            return super().get_bars(symbol, timeframe, limit=limit, start=start, end=end)

    data = Recording({"ETHUSDT": crossover_frame(), "BTCUSDT": crossover_frame()})
    start = crossover_frame()["time"].iloc[0].to_pydatetime()
    BacktestSimulator(Config()).load(data, "ETHUSDT", "15m", start=start)
    assert calls[0] == ("ETHUSDT", "15m", start)
    assert calls[1] == ("BTCUSDT", "1h", start - timedelta(hours=250))


def test_reference_bars_never_close_after_signal_bar():
    # 15m series whose signal bar (index 15) opens at 04:00 and closes at 04:15
    frame = crossover_frame()
    frame["time"] = frame["time"] + timedelta(minutes=15)
    signal_time = frame["time"].iloc[15]
    reference = make_frame([float(i) for i in range(8)], minutes=60)
    seen = []

    class ReadReference(FilterStage):
        name = "reference"
        label = "Reference"

        def __init__(self, market_data):
            super().__init__()
            self.market_data = market_data

        def check(self, signal, context):
            seen.append(self.market_data.get_bars("BTCUSDT", "1h")["time"].iloc[-1])
            return FilterOutcome(True, "ok")

    simulator = BacktestSimulator(
        Config(), pipeline_factory=lambda config, data: SignalFilterPipeline([ReadReference(data)]))
    simulator.run(frame, "ETHUSDT", "15m", reference_frames={"BTCUSDT": reference})
    assert seen == [reference["time"].iloc[3]]
    assert seen[0] + timedelta(hours=1) <= signal_time + timedelta(minutes=15)


def test_historical_cursor_bounds_by_bar_close():
    data = HistoricalMarketData()
    data.add("BTCUSDT", make_frame([1.0, 2.0, 3.0], minutes=60), "1h")
    start = make_frame([1.0], minutes=60)["time"].iloc[0]
    data.advance_to(start + timedelta(minutes=119))
    assert data.get_bars("BTCUSDT", "1h")["close"].tolist() == [1.0]
    data.advance_to(start + timedelta(hours=2))
    assert data.get_bars("BTCUSDT", "1h")["close"].tolist() == [1.0, 2.0]
    data.advance_to(None)
    assert len(data.get_bars("BTCUSDT", "1h")) == 3
