"""Unit tests for trading.lifecycle."""

import threading
import time

import pytest

from signal_engine.core.config import Config
from signal_engine.core.types import PositionStatus, SignalSide
from signal_engine.execution.base import FILLED, OrderResult
from signal_engine.trading.lifecycle import PositionLifecycleManager
from conftest import FakeGateway, FixedClock, RecordingNotifier, entry_params


def open_long(manager, gateway, price=100.0, quantity=0.1, children=None):
    params = entry_params(SignalSide.LONG, price, quantity)
    order = OrderResult(order_id=f"E{len(manager.open_positions()) + len(manager.closed_positions()) + 1}",
                        status=FILLED, fill_price=price, quantity=quantity, child_order_ids=children or [])
    return manager.open_position(params, order)


@pytest.fixture
def manager(config, gateway, notifier, clock):
    m = PositionLifecycleManager(config, gateway, notifier=notifier, clock=clock)
    yield m
    m.shutdown()


def test_open_position_initial_state(manager, gateway):
    position = open_long(manager, gateway)
    assert position.status is PositionStatus.OPEN
    assert position.remaining_quantity == 0.1
    assert position.trailing.current_stop_price == pytest.approx(99.7)
    assert position.dca.last_dca_price == 100.0
    assert position.auto_close_deadline is None
    assert manager.open_positions("ETHUSDT") == [position]


def test_trailing_stop_only_ratchets_favourably(manager, gateway, config):
    config.update({"TRAILING_STOP_ENABLED": True, "TRAILING_STOP_DISTANCE": 1.0})
    position = open_long(manager, gateway)
    stops = []
    for price in (100.2, 101.0, 100.5, 101.5, 100.6):
        assert manager.evaluate(position.id, price) is None
        stops.append(position.trailing.current_stop_price)
    assert stops == sorted(stops)
    assert stops[0] == pytest.approx(99.7)
    assert stops[-1] == pytest.approx(101.5 * 0.99)

    event = manager.evaluate(position.id, 100.4)
    assert event is not None
    assert event.reason == "trailing_stop"
    assert event.pnl == pytest.approx((100.4 - 100.0) * 0.1)
    assert position.status is PositionStatus.CLOSED
    assert manager.open_positions() == []


def test_short_trailing_stop(manager, gateway, config):
    config.update({"TRAILING_STOP_ENABLED": True, "TRAILING_STOP_DISTANCE": 1.0})
    params = entry_params(SignalSide.SHORT, 100.0, 0.1)
    position = manager.open_position(params, OrderResult("S1", FILLED, 100.0, 0.1))
    manager.evaluate(position.id, 98.0)
    assert position.trailing.current_stop_price == pytest.approx(98.98)
    manager.evaluate(position.id, 98.5)
    assert position.trailing.current_stop_price == pytest.approx(98.98)
    event = manager.evaluate(position.id, 99.0)
    assert event.reason == "trailing_stop"
    assert gateway.reduce_only_orders()[-1].side == SignalSide.LONG


def test_partial_tp_executes_once(manager, gateway, config, notifier):
    config.update({"PARTIAL_TP_ENABLED": True, "PARTIAL_TP_PERCENT": 50})
    position = open_long(manager, gateway)
    manager.evaluate(position.id, 100.3)
    manager.evaluate(position.id, 100.3)
    assert position.partial_executed is True
    assert position.remaining_quantity == pytest.approx(0.05)
    assert len(gateway.reduce_only_orders()) == 1
    assert position.realized_pnl == pytest.approx(0.3 * 0.05)
    assert notifier.names().count("partial_tp") == 1


def test_partial_tp_below_level_does_nothing(manager, gateway, config):
    config.update({"PARTIAL_TP_ENABLED": True})
    position = open_long(manager, gateway)
    manager.evaluate(position.id, 100.2)
    assert position.partial_executed is False
    assert gateway.reduce_only_orders() == []


def test_full_partial_tp_closes_position(manager, gateway, config):
    config.update({"PARTIAL_TP_ENABLED": True, "PARTIAL_TP_PERCENT": 100})
    position = open_long(manager, gateway)
    event = manager.evaluate(position.id, 100.3)
    assert event.reason == "partial_tp"
    assert event.pnl == pytest.approx(0.3 * 0.1)
    assert position.status is PositionStatus.CLOSED


def test_dca_adds_and_stops_at_max_steps(manager, gateway, config):
    config.update({"DCA_ENABLED": True, "DCA_MAX_STEPS": 2, "DCA_DISTANCE_PERCENT": 3.0})
    position = open_long(manager, gateway)
    manager.evaluate(position.id, 96.9)
    assert position.dca.steps == 1
    assert position.quantity == pytest.approx(0.2)
    assert position.entry_price == pytest.approx(98.45)
    manager.evaluate(position.id, 96.0)  # not 3% below the last DCA price
    assert position.dca.steps == 1
    manager.evaluate(position.id, 93.9)
    manager.evaluate(position.id, 80.0)
    manager.evaluate(position.id, 70.0)
    assert position.dca.steps == 2
    assert position.quantity == pytest.approx(0.3)
    assert position.remaining_quantity == pytest.approx(0.3)
    assert len(gateway.placed) == 2


def test_close_failure_keeps_position_open(manager, gateway, notifier):
    position = open_long(manager, gateway, children=["TP1", "SL1"])
    gateway.fail_reduce_only = True
    assert manager.close_position(position.id, price=101.0) is None
    assert position.status is PositionStatus.OPEN
    assert "close_failed" in notifier.names()
    # protective orders untouched while the position is still open
    assert position.child_order_ids == ["TP1", "SL1"]
    assert gateway.cancelled == []

    gateway.fail_reduce_only = False
    event = manager.close_position(position.id, price=101.0)
    assert event.reason == "manual"
    assert event.pnl == pytest.approx(0.1)
    assert gateway.cancelled == ["TP1", "SL1"]
    assert manager.close_position(position.id) is None


def test_tick_with_failed_trailing_close_retries_next_tick(manager, gateway, config):
    config.update({"TRAILING_STOP_ENABLED": True, "TRAILING_STOP_DISTANCE": 0.5})
    position = open_long(manager, gateway)
    gateway.fail_reduce_only = True
    assert manager.evaluate(position.id, 99.0) is None
    assert position.is_open
    gateway.fail_reduce_only = False
    assert manager.evaluate(position.id, 99.0).reason == "trailing_stop"


def test_closing_cancels_children(manager, gateway):
    position = open_long(manager, gateway, children=["TP1", "SL1"])
    manager.close_position(position.id, price=100.0)
    assert gateway.cancelled == ["TP1", "SL1"]
    assert position.child_order_ids == []


def test_sync_detects_exchange_take_profit(manager, gateway):
    position = open_long(manager, gateway, children=["TP1", "SL1"])
    assert manager.sync_protective_orders(position.id) is None
    gateway.statuses["TP1"] = OrderResult("TP1", FILLED, fill_price=100.5, quantity=0.1)
    event = manager.sync_protective_orders(position.id)
    assert event.reason == "take_profit"
    assert event.exit_price == 100.5
    assert gateway.cancelled == ["SL1"]
    assert gateway.reduce_only_orders() == []


def test_listeners_receive_one_event(manager, gateway):
    events = []
    manager.add_listener(events.append)
    position = open_long(manager, gateway)
    manager.close_position(position.id, price=100.0)
    manager.close_position(position.id, price=100.0)
    assert len(events) == 1
    assert events[0].position_id == position.id
    assert manager.get(position.id).status is PositionStatus.CLOSED


def test_manual_close_cancels_deadline(gateway, notifier):
    config = Config(auto_close_timeout_hours=1.0)
    manager = PositionLifecycleManager(config, gateway, notifier=notifier)
    try:
        position = open_long(manager, gateway)
        assert position.auto_close_deadline is not None
        assert manager.scheduler.pending() == [position.id]
        manager.close_position(position.id, price=100.0)
        assert manager.scheduler.pending() == []
    finally:
        manager.shutdown()


def test_auto_close_fires_once(gateway):
    config = Config(auto_close_timeout_hours=0.05 / 3600)
    manager = PositionLifecycleManager(config, gateway)
    events = []
    manager.add_listener(events.append)
    try:
        gateway.prices["ETHUSDT"] = 99.0
        position = open_long(manager, gateway)
        deadline = time.time() + 5
        while position.is_open and time.time() < deadline:
            time.sleep(0.01)
        assert position.status is PositionStatus.CLOSED
        assert events[0].reason == "auto_timeout"
        assert manager.close_position(position.id) is None
        assert len(events) == 1
        assert manager.scheduler.pending() == []
    finally:
        manager.shutdown()


def test_concurrent_manual_and_auto_close(gateway):
    gateway.close_delay = 0.05
    gateway.prices["ETHUSDT"] = 100.0
    manager = PositionLifecycleManager(Config(), gateway)
    events = []
    manager.add_listener(events.append)
    try:
        position = open_long(manager, gateway)
        barrier = threading.Barrier(2)
        results = {}

        def manual():
            barrier.wait()
            results["manual"] = manager.close_position(position.id)

        def auto():
            barrier.wait()
            results["auto"] = manager.expire(position.id)

        threads = [threading.Thread(target=manual), threading.Thread(target=auto)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        winners = [r for r in results.values() if r is not None]
        assert len(winners) == 1
        assert len(events) == 1
        assert len(gateway.reduce_only_orders()) == 1
        assert position.status is PositionStatus.CLOSED
    finally:
        manager.shutdown()


def test_on_prices_evaluates_positions_concurrently(manager, gateway, config):
    config.update({"TRAILING_STOP_ENABLED": True, "TRAILING_STOP_DISTANCE": 1.0})
    first = open_long(manager, gateway)
    params = entry_params(SignalSide.LONG, 50.0, 0.2, symbol="BTCUSDT")
    second = manager.open_position(params, OrderResult("B1", FILLED, 50.0, 0.2))
    events = manager.on_prices({"ETHUSDT": 99.0, "BTCUSDT": 51.0})
    assert [e.position_id for e in events] == [first.id]
    assert second.is_open
    assert manager.stats()["active_positions"] == 1
    assert manager.stats()["closed_positions"] == 1


def test_close_all(manager, gateway):
    open_long(manager, gateway)
    open_long(manager, gateway)
    gateway.prices["ETHUSDT"] = 100.0
    events = manager.close_all()
    assert {e.reason for e in events} == {"emergency_stop"}
    assert manager.open_positions() == []


def test_cancel_failure_after_close_fill_still_closes(manager, gateway):
    position = open_long(manager, gateway, children=["TP1", "SL1"])
    gateway.fail_cancel = True
    event = manager.close_position(position.id, price=100.0)
    assert event is not None
    assert position.status is PositionStatus.CLOSED
    assert position.child_order_ids == []
