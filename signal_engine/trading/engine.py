"""
Trading engine: takes a signal through filters, risk gate and order placement,
then keeps the resulting positions monitored.

    signal -> pipeline -> risk gate -> trade params -> place_order -> lifecycle

Resting limit entries are tracked as pending until they fill or time out.
"""

from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from signal_engine.core.config import Config
from signal_engine.core.errors import EngineError, GatewayError
from signal_engine.core.logger import trade_event
from signal_engine.core.types import ClosureEvent, Position, ProcessResult, Signal, TradeParams
from signal_engine.execution.base import CANCELED, ExchangeGateway, OrderResult
from signal_engine.filters.pipeline import SignalFilterPipeline
from signal_engine.risk.manager import ExposureSnapshot, RiskDecision, RiskGate
from signal_engine.trading.lifecycle import PositionLifecycleManager
from signal_engine.trading.params import trade_params_from_config

logger = logging.getLogger("signal_engine.engine")

# SignalOutcome.status values
OPENED = "opened"
PENDING = "pending"
REJECTED = "rejected"
DENIED = "denied"
FAILED = "failed"


@dataclass
class SignalOutcome:
    """What happened to one signal."""
    signal: Signal
    status: str
    reason: str
    process_result: Optional[ProcessResult] = None
    risk: Optional[RiskDecision] = None
    params: Optional[TradeParams] = None
    order: Optional[OrderResult] = None
    position_id: Optional[str] = None

    @property
    def executed(self) -> bool:
        return self.status in (OPENED, PENDING)


@dataclass
class PendingEntry:
    params: TradeParams
    order_id: str
    placed_at: datetime
    children: List[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TradingEngine:

    def __init__(
        self,
        config: Config,
        pipeline: SignalFilterPipeline,
        risk_gate: RiskGate,
        gateway: ExchangeGateway,
        lifecycle: PositionLifecycleManager,
        notifier=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.risk_gate = risk_gate
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.notifier = notifier
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingEntry] = {}
        self._report_day: Optional[date] = None
        lifecycle.add_listener(self._on_closed)
        on_closed = getattr(gateway, "on_position_closed", None)
        if on_closed is not None:
            lifecycle.add_listener(on_closed)

    def _on_closed(self, event: ClosureEvent) -> None:
        self.risk_gate.record_trade_result(event.pnl, event.symbol)

    def pending_entries(self) -> List[PendingEntry]:
        with self._lock:
            return list(self._pending.values())

    def exposure(self, symbol: str) -> ExposureSnapshot:
        """Open positions plus resting entries, and the free quote balance."""
        positions = self.lifecycle.open_positions()
        pending = self.pending_entries()
        return ExposureSnapshot(
            open_positions=len(positions) + len(pending),
            open_positions_for_symbol=(
                sum(1 for p in positions if p.symbol == symbol)
                + sum(1 for p in pending if p.params.symbol == symbol)
            ),
            balance_free=self.gateway.get_balance().free,
        )

    # ----- signals -----

    def handle_signal(self, signal: Signal) -> SignalOutcome:
        """Run one signal end to end. Never raises."""
        trade_event("signal_received", strategy=signal.strategy, symbol=signal.symbol,
                    action=signal.action.value, price=signal.price, timeframe=signal.timeframe)
        try:
            return self._handle(signal)
        except Exception as e:
            logger.exception("Signal handling failed for %s %s", signal.symbol, signal.action.value)
            self._notify("error", symbol=signal.symbol, action=signal.action.value, error=str(e))
            return SignalOutcome(signal=signal, status=FAILED, reason=f"unexpected error: {e}")

    def _handle(self, signal: Signal) -> SignalOutcome:
        result = self.pipeline.process(signal)
        if not result.approved:
            if self.config.notify_rejections:
                self._notify("signal_rejected", symbol=signal.symbol, action=signal.action.value,
                             price=signal.price, reason=result.reason)
            return SignalOutcome(signal=signal, status=REJECTED, reason=result.reason, process_result=result)

        try:
            exposure = self.exposure(signal.symbol)
        except GatewayError as e:
            logger.error("Exposure unavailable for %s: %s", signal.symbol, e)
            return self._failed(signal, result, f"balance unavailable: {e}")
        risk = self.risk_gate.check(signal, exposure)
        if not risk.allowed:
            trade_event("risk_denied", symbol=signal.symbol, action=signal.action.value, reason=risk.reason)
            if self.config.notify_rejections:
                self._notify("signal_rejected", symbol=signal.symbol, action=signal.action.value,
                             price=signal.price, reason=f"Risk: {risk.reason}")
            return SignalOutcome(signal=signal, status=DENIED, reason=risk.reason, process_result=result, risk=risk)

        try:
            params = trade_params_from_config(signal, self.config)
        except (EngineError, ValueError) as e:
            logger.error("Trade params for %s rejected: %s", signal.symbol, e)
            return self._failed(signal, result, f"invalid trade params: {e}", risk=risk)

        self._notify("signal_approved", symbol=signal.symbol, action=signal.action.value, price=signal.price,
                     entry=params.entry_price, tp=params.take_profit_price, sl=params.stop_price)
        try:
            order = self.gateway.place_order(params)
        except GatewayError as e:
            logger.error("Entry order failed for %s %s: %s", signal.symbol, signal.action.value, e)
            self._notify("order_failed", symbol=signal.symbol, action=signal.action.value, error=str(e))
            return self._failed(signal, result, f"order failed: {e}", risk=risk, params=params)

        if order.filled:
            position = self.lifecycle.open_position(params, order)
            self._notify("position_opened", symbol=position.symbol, side=position.side.value,
                         quantity=position.quantity, entry=position.entry_price,
                         tp=position.take_profit_price, sl=position.stop_price)
            return SignalOutcome(signal=signal, status=OPENED, reason="entry filled", process_result=result,
                                 risk=risk, params=params, order=order, position_id=position.id)

        with self._lock:
            self._pending[order.order_id] = PendingEntry(params, order.order_id, self._clock(),
                                                         list(order.child_order_ids))
        logger.info("Entry %s for %s resting at %.6f (status %s)", order.order_id, signal.symbol,
                    params.entry_price, order.status)
        trade_event("entry_pending", id=order.order_id, symbol=signal.symbol, side=params.side.value,
                    entry=params.entry_price, qty=params.quantity)
        return SignalOutcome(signal=signal, status=PENDING, reason=f"entry order {order.status}",
                             process_result=result, risk=risk, params=params, order=order)

    def _failed(self, signal: Signal, result: ProcessResult, reason: str, **kwargs) -> SignalOutcome:
        return SignalOutcome(signal=signal, status=FAILED, reason=reason, process_result=result, **kwargs)

    # ----- pending entries -----

    def poll_pending_entries(self, now: Optional[datetime] = None) -> List[Position]:
        """Open positions for filled limit entries; cancel those past ORDER_TIMEOUT_MINUTES."""
        now = now or self._clock()
        timeout = timedelta(minutes=self.config.order_timeout_minutes)
        opened = []
        for entry in self.pending_entries():
            params = entry.params
            try:
                status = self.gateway.get_order_status(params.symbol, entry.order_id)
            except GatewayError as e:
                logger.error("Status check for entry %s failed: %s", entry.order_id, e)
                continue
            if status.filled:
                children = entry.children or self.gateway.attach_protective_orders(params, status.quantity or None)
                filled = OrderResult(
                    order_id=entry.order_id,
                    status=status.status,
                    fill_price=status.fill_price or params.entry_price,
                    quantity=status.quantity or params.quantity,
                    child_order_ids=children,
                )
                with self._lock:
                    self._pending.pop(entry.order_id, None)
                position = self.lifecycle.open_position(params, filled)
                self._notify("position_opened", symbol=position.symbol, side=position.side.value,
                             quantity=position.quantity, entry=position.entry_price,
                             tp=position.take_profit_price, sl=position.stop_price)
                opened.append(position)
            elif status.status in (CANCELED, "EXPIRED", "REJECTED"):
                logger.warning("Entry %s for %s ended as %s", entry.order_id, params.symbol, status.status)
                with self._lock:
                    self._pending.pop(entry.order_id, None)
            elif now - entry.placed_at >= timeout:
                try:
                    self.gateway.cancel_order(params.symbol, entry.order_id)
                except GatewayError as e:
                    logger.error("Cancel of timed out entry %s failed: %s", entry.order_id, e)
                    continue
                with self._lock:
                    self._pending.pop(entry.order_id, None)
                logger.info("Entry %s for %s cancelled after %.0f minutes", entry.order_id, params.symbol,
                            self.config.order_timeout_minutes)
                trade_event("entry_cancelled", id=entry.order_id, symbol=params.symbol, reason="timeout")
        return opened

    # ----- monitoring -----

    def monitor_once(self) -> List[ClosureEvent]:
        """One monitoring pass: pending entries, exchange-side TP/SL fills, then price ticks."""
        self.poll_pending_entries()
        events = []
        for position in self.lifecycle.open_positions():
            if position.child_order_ids:
                event = self.lifecycle.sync_protective_orders(position.id)
                if event is not None:
                    events.append(event)

        prices: Dict[str, float] = {}
        for symbol in {p.symbol for p in self.lifecycle.open_positions()}:
            try:
                prices[symbol] = self.gateway.get_market_price(symbol)
            except GatewayError as e:
                logger.error("Price for %s unavailable, skipping this tick: %s", symbol, e)
        if prices:
            events.extend(self.lifecycle.on_prices(prices))
        return events

    def daily_report(self) -> dict:
        risk = self.risk_gate.snapshot()
        report = {
            "daily": risk["daily_stats"],
            "positions": self.lifecycle.stats(),
            "pending_entries": len(self.pending_entries()),
            "filters": self.pipeline.stats(),
        }
        d = risk["daily_stats"]
        self._notify("daily_report", date=d["date"], trades=d["trade_count"], profit=d["total_profit"],
                     loss=d["total_loss"], active=report["positions"]["active_positions"])
        return report

    def run(self, poll_seconds: float = 5.0, until_flat: bool = False) -> None:
        """Monitor until interrupted (or, with until_flat, until nothing is open or pending)."""
        logger.info("Monitoring loop started (every %.1fs)", poll_seconds)
        while True:
            try:
                self.monitor_once()
                today = self._clock().date()
                if self._report_day is None:
                    self._report_day = today
                elif today != self._report_day:
                    self.daily_report()
                    self._report_day = today
                if until_flat and not self.lifecycle.open_positions() and not self.pending_entries():
                    logger.info("No open positions or pending entries left")
                    break
                time.sleep(poll_seconds)
            except KeyboardInterrupt:
                logger.info("Shutdown by user")
                break
            except Exception as e:
                logger.exception("Monitor loop error: %s", e)
                time.sleep(poll_seconds)

    def _notify(self, event: str, **fields) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event, **fields)
        except Exception:
            logger.exception("Notifier failed for %s", event)
