"""Unit tests for risk.manager."""

from signal_engine.core.config import Config
from signal_engine.risk.manager import ExposureSnapshot, RiskGate
from conftest import FixedClock, make_signal


def exposure(open_positions=0, for_symbol=0, free=1000.0):
    return ExposureSnapshot(open_positions=open_positions, open_positions_for_symbol=for_symbol, balance_free=free)


def test_all_checks_pass():
    gate = RiskGate(Config())
    d = gate.check(make_signal(), exposure())
    assert d.allowed is True
    assert [c.name for c in d.checks] == [
        "max_active_trades", "max_trades_per_coin", "daily_loss_limit", "sufficient_balance",
    ]


def test_max_active_trades_denies_regardless_of_others():
    gate = RiskGate(Config(max_active_trades=5))
    d = gate.check(make_signal(), exposure(open_positions=5))
    assert d.allowed is False
    assert "max_active_trades" in d.reason
    assert "max_trades_per_coin" not in d.reason


def test_every_failing_check_is_reported():
    gate = RiskGate(Config(max_trades_per_coin=1, default_usdt_amount=10.0))
    d = gate.check(make_signal(), exposure(for_symbol=1, free=5.0))
    assert d.allowed is False
    assert d.reason.startswith("max_trades_per_coin: ")
    assert "; sufficient_balance: " in d.reason


def test_daily_loss_limit():
    config = Config(max_active_trades=5, default_usdt_amount=10.0, daily_loss_cap_percent=5.0)
    gate = RiskGate(config)
    assert gate.daily_loss_limit() == 2.5
    gate.record_trade_result(-1.0, "ETHUSDT")
    assert gate.check(make_signal(), exposure()).allowed is True
    gate.record_trade_result(-1.5, "ETHUSDT")
    d = gate.check(make_signal(), exposure())
    assert d.allowed is False
    assert "daily_loss_limit" in d.reason


def test_profit_does_not_offset_loss():
    gate = RiskGate(Config())
    gate.record_trade_result(5.0)
    gate.record_trade_result(-1.0)
    daily = gate.snapshot()["daily_stats"]
    assert daily["total_profit"] == 5.0
    assert daily["total_loss"] == 1.0
    assert daily["trade_count"] == 2


def test_daily_stats_reset_on_new_utc_day():
    clock = FixedClock()
    gate = RiskGate(Config(), clock=clock)
    gate.record_trade_result(-100.0)
    assert gate.check(make_signal(), exposure()).allowed is False
    clock.advance(days=1)
    assert gate.check(make_signal(), exposure()).allowed is True
    assert gate.snapshot()["daily_stats"]["total_loss"] == 0.0


def test_limits_read_fresh_from_config():
    config = Config()
    gate = RiskGate(config)
    assert gate.check(make_signal(), exposure(open_positions=1)).allowed is True
    config.update({"MAX_ACTIVE_TRADES": 1})
    assert gate.check(make_signal(), exposure(open_positions=1)).allowed is False
    assert gate.snapshot()["limits"]["max_active_trades"] == 1
