"""
Position lifecycle: partial take profit, trailing stop, DCA and timed auto-close
for every filled entry, until the position is closed.

Each position has its own evaluation slot (a Lock). Price ticks, manual closes and
auto-close deadlines for one position all go through that slot, so at most one is
in flight at a time and whoever closes first wins; the others find the position
CLOSED and do nothing. Different positions are evaluated concurrently.
"""

from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from signal_engine.core.config import Config
from signal_engine.core.errors import GatewayError
from signal_engine.core.logger import trade_event
from signal_engine.core.scheduler import DeadlineScheduler
from signal_engine.core.types import (
    ClosureEvent, DcaState, OrderType, Position, PositionStatus, SignalSide, TradeParams, TrailingState,
)
from signal_engine.execution.base import ExchangeGateway, OrderResult
from signal_engine.trading.params import close_params

logger = logging.getLogger("signal_engine.lifecycle")

ClosureListener = Callable[[ClosureEvent], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PositionLifecycleManager:

    def __init__(
        self,
        config: Config,
        gateway: ExchangeGateway,
        scheduler: Optional[DeadlineScheduler] = None,
        notifier=None,
        max_workers: int = 8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.scheduler = scheduler or DeadlineScheduler()
        self.notifier = notifier
        self._clock = clock or _utc_now
        self._store_lock = threading.Lock()
        self._positions: Dict[str, Position] = {}
        self._slots: Dict[str, threading.Lock] = {}
        self._archive: Dict[str, Position] = {}
        self._listeners: List[ClosureListener] = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="position-eval")

    # ----- store -----

    def add_listener(self, listener: ClosureListener) -> None:
        self._listeners.append(listener)

    def open_positions(self, symbol: Optional[str] = None) -> List[Position]:
        with self._store_lock:
            positions = list(self._positions.values())
        if symbol is not None:
            positions = [p for p in positions if p.symbol == symbol]
        return positions

    def get(self, position_id: str) -> Optional[Position]:
        with self._store_lock:
            return self._positions.get(position_id) or self._archive.get(position_id)

    def closed_positions(self) -> List[Position]:
        with self._store_lock:
            return list(self._archive.values())

    def _slot(self, position_id: str) -> Optional[Tuple[Position, threading.Lock]]:
        with self._store_lock:
            position = self._positions.get(position_id)
            if position is None:
                return None
            return position, self._slots[position_id]

    def open_position(self, params: TradeParams, order: OrderResult) -> Position:
        """Track a filled entry order as an OPEN position."""
        entry = order.fill_price or params.entry_price
        quantity = order.quantity or params.quantity
        stop = params.stop_price if params.stop_price is not None else entry
        now = self._clock()
        position = Position(
            id=order.order_id,
            symbol=params.symbol,
            side=params.side,
            entry_price=entry,
            quantity=quantity,
            stop_price=stop,
            take_profit_price=params.take_profit_price if params.take_profit_price is not None else entry,
            trailing=TrailingState(highest_price=entry, lowest_price=entry, current_stop_price=stop),
            dca=DcaState(steps=0, last_dca_price=entry, base_quantity=quantity),
            remaining_quantity=quantity,
            child_order_ids=list(order.child_order_ids),
            opened_at=now,
        )
        hours = self.config.auto_close_timeout_hours
        if hours > 0:
            position.auto_close_deadline = now + timedelta(hours=hours)
        with self._store_lock:
            if position.id in self._positions:
                raise ValueError(f"position {position.id} already open")
            self._positions[position.id] = position
            self._slots[position.id] = threading.Lock()
        if hours > 0:
            self.scheduler.schedule(position.id, hours * 3600, self.expire)
        logger.info(
            "Position opened %s: %s %s qty=%.6f entry=%.6f sl=%.6f tp=%.6f",
            position.id, position.symbol, position.side.value, quantity, entry, position.stop_price,
            position.take_profit_price,
        )
        trade_event("position_opened", id=position.id, symbol=position.symbol, side=position.side.value,
                    qty=quantity, entry=entry, sl=position.stop_price, tp=position.take_profit_price)
        return position

    # ----- evaluation -----

    def evaluate(self, position_id: str, price: float) -> Optional[ClosureEvent]:
        """Run one tick for a position. Returns the ClosureEvent if this tick closed it."""
        entry = self._slot(position_id)
        if entry is None:
            return None
        position, slot = entry
        with slot:
            if not position.is_open:
                return None
            try:
                return self._evaluate_locked(position, price)
            except GatewayError as e:
                logger.error("Tick for %s aborted: %s", position_id, e)
                self._notify("error", position=position_id, symbol=position.symbol, error=str(e))
                return None

    def _evaluate_locked(self, position: Position, price: float) -> Optional[ClosureEvent]:
        c = self.config
        if c.partial_tp_enabled and not position.partial_executed:
            self._partial_take_profit(position, price)
            if position.remaining_quantity <= 0:
                self._cancel_children(position)
                return self._finalize(position, price, "partial_tp")
        if c.trailing_stop_enabled and self._trailing_stop_hit(position, price):
            return self._close_locked(position, "trailing_stop", price)
        if c.dca_enabled:
            self._dca(position, price)
        if position.auto_close_deadline is not None and self._clock() >= position.auto_close_deadline:
            # deadline passed but the timer's close did not go through; retry here
            return self._close_locked(position, "auto_timeout", price)
        return None

    def _partial_take_profit(self, position: Position, price: float) -> None:
        half = self.config.default_tp_percent / 200.0
        if position.side == SignalSide.LONG:
            level = position.entry_price * (1 + half)
            hit = price >= level
        else:
            level = position.entry_price * (1 - half)
            hit = price <= level
        if not hit:
            return
        qty = min(position.quantity * self.config.partial_tp_percent / 100.0, position.remaining_quantity)
        if qty <= 0:
            return
        try:
            result = self.gateway.place_order(close_params(position.symbol, position.side, qty, price))
        except GatewayError as e:
            logger.error("Partial TP order failed for %s: %s", position.id, e)
            return
        if not result.filled:
            logger.error("Partial TP order for %s not filled (status %s)", position.id, result.status)
            return
        fill = result.fill_price or price
        position.realized_pnl += position.pnl_at(fill, qty)
        position.remaining_quantity -= qty
        position.partial_executed = True
        logger.info("Partial TP %s: closed %.6f @ %.6f, remaining %.6f", position.id, qty, fill, position.remaining_quantity)
        trade_event("partial_tp", id=position.id, symbol=position.symbol, qty=qty, price=fill,
                    remaining=position.remaining_quantity)
        self._notify("partial_tp", position=position.id, symbol=position.symbol, quantity=qty, price=fill)

    def _trailing_stop_hit(self, position: Position, price: float) -> bool:
        """Ratchet the stop toward the price; True if price crossed it."""
        t = position.trailing
        distance = self.config.trailing_stop_distance / 100.0
        if position.side == SignalSide.LONG:
            if price > t.highest_price:
                t.highest_price = price
            candidate = t.highest_price * (1 - distance)
            if candidate > t.current_stop_price:
                logger.info("Trailing stop %s: %.6f -> %.6f", position.id, t.current_stop_price, candidate)
                t.current_stop_price = candidate
            return price <= t.current_stop_price
        if price < t.lowest_price:
            t.lowest_price = price
        candidate = t.lowest_price * (1 + distance)
        if candidate < t.current_stop_price:
            logger.info("Trailing stop %s: %.6f -> %.6f", position.id, t.current_stop_price, candidate)
            t.current_stop_price = candidate
        return price >= t.current_stop_price

    def _dca(self, position: Position, price: float) -> None:
        d = position.dca
        if d.steps >= self.config.dca_max_steps:
            return
        distance = self.config.dca_distance_percent / 100.0
        if position.side == SignalSide.LONG:
            hit = price <= d.last_dca_price * (1 - distance)
        else:
            hit = price >= d.last_dca_price * (1 + distance)
        if not hit:
            return
        params = TradeParams(
            symbol=position.symbol,
            side=position.side,
            order_type=OrderType.MARKET,
            quantity=d.base_quantity,
            entry_price=price,
        )
        try:
            result = self.gateway.place_order(params)
        except GatewayError as e:
            logger.error("DCA order failed for %s: %s", position.id, e)
            return
        if not result.filled:
            logger.error("DCA order for %s not filled (status %s)", position.id, result.status)
            return
        fill = result.fill_price or price
        added = result.quantity or d.base_quantity
        held = position.remaining_quantity
        position.entry_price = (position.entry_price * held + fill * added) / (held + added)
        position.quantity += added
        position.remaining_quantity += added
        d.steps += 1
        d.last_dca_price = fill
        logger.info("DCA %s step %d: +%.6f @ %.6f, avg entry %.6f", position.id, d.steps, added, fill, position.entry_price)
        trade_event("dca", id=position.id, symbol=position.symbol, step=d.steps, qty=added, price=fill,
                    total_qty=position.quantity)
        self._notify("dca", position=position.id, symbol=position.symbol, step=d.steps, price=fill)

    def on_price(self, symbol: str, price: float) -> List[ClosureEvent]:
        """Evaluate every open position on `symbol` at `price` (sequentially)."""
        events = []
        for position in self.open_positions(symbol):
            event = self.evaluate(position.id, price)
            if event is not None:
                events.append(event)
        return events

    def on_prices(self, prices: Dict[str, float]) -> List[ClosureEvent]:
        """Evaluate all open positions concurrently, one task per position."""
        futures = {
            self._executor.submit(self.evaluate, p.id, prices[p.symbol]): p.id
            for p in self.open_positions()
            if p.symbol in prices
        }
        events = []
        for future, position_id in futures.items():
            try:
                event = future.result()
            except Exception:
                logger.exception("Evaluation of %s failed", position_id)
                continue
            if event is not None:
                events.append(event)
        return events

    # ----- closing -----

    def close_position(self, position_id: str, reason: str = "manual", price: Optional[float] = None) -> Optional[ClosureEvent]:
        """
        Close the remaining quantity at market. Returns the ClosureEvent, or None if the
        position is not open or the close failed (it then stays OPEN).
        """
        entry = self._slot(position_id)
        if entry is None:
            logger.debug("Close %s ignored: not open", position_id)
            return None
        position, slot = entry
        with slot:
            if not position.is_open:
                return None
            try:
                return self._close_locked(position, reason, price)
            except GatewayError as e:
                logger.error("Close of %s (%s) failed, position stays open: %s", position_id, reason, e)
                self._notify("close_failed", position=position_id, symbol=position.symbol, reason=reason, error=str(e))
                return None

    def expire(self, position_id: str) -> Optional[ClosureEvent]:
        """Auto-close deadline callback."""
        logger.info("Auto-close deadline reached for %s", position_id)
        return self.close_position(position_id, reason="auto_timeout")

    def close_all(self, reason: str = "emergency_stop") -> List[ClosureEvent]:
        events = []
        for position in self.open_positions():
            event = self.close_position(position.id, reason=reason)
            if event is not None:
                events.append(event)
        logger.warning("Close all (%s): %d positions closed", reason, len(events))
        return events

    def sync_protective_orders(self, position_id: str) -> Optional[ClosureEvent]:
        """
        Check the exchange-side TP/SL children. If one filled, the position is already
        flat on the exchange: cancel the other child and record the closure.
        """
        entry = self._slot(position_id)
        if entry is None:
            return None
        position, slot = entry
        with slot:
            if not position.is_open or not position.child_order_ids:
                return None
            try:
                for child_id in list(position.child_order_ids):
                    status = self.gateway.get_order_status(position.symbol, child_id)
                    if status.filled:
                        position.child_order_ids.remove(child_id)
                        self._cancel_children(position)
                        exit_price = status.fill_price or position.take_profit_price
                        reason = "take_profit" if position.pnl_at(exit_price) > 0 else "stop_loss"
                        return self._finalize(position, exit_price, reason)
            except GatewayError as e:
                logger.error("Protective order sync for %s failed: %s", position_id, e)
        return None

    def _cancel_children(self, position: Position) -> None:
        """Cancel leftover TP/SL children once the position is flat on the exchange."""
        for child_id in list(position.child_order_ids):
            try:
                self.gateway.cancel_order(position.symbol, child_id)
            except GatewayError as e:
                # reduce-only, so a child left behind on a flat position cannot open anything
                logger.warning("Child order %s of %s not cancelled: %s", child_id, position.id, e)
            position.child_order_ids.remove(child_id)

    def _close_locked(self, position: Position, reason: str, price: Optional[float]) -> ClosureEvent:
        # children stay live until the close fill is confirmed
        if price is None:
            price = self.gateway.get_market_price(position.symbol)
        result = self.gateway.place_order(close_params(position.symbol, position.side, position.remaining_quantity, price))
        if not result.filled:
            raise GatewayError(f"close order {result.order_id} not confirmed (status {result.status})")
        self._cancel_children(position)
        return self._finalize(position, result.fill_price or price, reason)

    def _finalize(self, position: Position, exit_price: float, reason: str) -> ClosureEvent:
        closed_qty = position.remaining_quantity
        pnl = position.realized_pnl + position.pnl_at(exit_price, closed_qty)
        now = self._clock()
        position.realized_pnl = pnl
        position.remaining_quantity = 0.0
        position.exit_price = exit_price
        position.closed_at = now
        position.close_reason = reason
        position.status = PositionStatus.CLOSED
        with self._store_lock:
            self._positions.pop(position.id, None)
            self._slots.pop(position.id, None)
            self._archive[position.id] = position
        self.scheduler.cancel(position.id)

        event = ClosureEvent(
            position_id=position.id,
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            quantity=closed_qty,
            pnl=pnl,
            reason=reason,
            closed_at=now,
            opened_at=position.opened_at,
        )
        logger.info("Position closed %s: %s %s exit=%.6f pnl=%.4f reason=%s",
                    position.id, position.symbol, position.side.value, exit_price, pnl, reason)
        trade_event("position_closed", id=position.id, symbol=position.symbol, side=position.side.value,
                    entry=position.entry_price, exit=exit_price, qty=closed_qty, pnl=round(pnl, 6), reason=reason)
        self._notify("position_closed", position=position.id, symbol=position.symbol, side=position.side.value,
                     exit_price=exit_price, pnl=pnl, reason=reason)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Closure listener failed for %s", position.id)
        return event

    def _notify(self, event: str, **fields) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event, **fields)
        except Exception:
            logger.exception("Notifier failed for %s", event)

    def stats(self) -> dict:
        c = self.config
        with self._store_lock:
            active = len(self._positions)
            closed = len(self._archive)
        return {
            "active_positions": active,
            "closed_positions": closed,
            "pending_deadlines": len(self.scheduler.pending()),
            "features": {
                "partial_tp": c.partial_tp_enabled,
                "trailing_stop": c.trailing_stop_enabled,
                "dca": c.dca_enabled,
                "auto_close": c.auto_close_timeout_hours > 0,
            },
        }

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self._executor.shutdown(wait=True)
