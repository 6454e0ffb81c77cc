"""
Paper trading gateway: fills against the current market price, keeps a simulated
USDT balance and a trade history, and persists both to a JSON snapshot.

Market orders fill immediately. Limit entries and the TP/SL children of an entry
rest until get_order_status() sees the market price cross them.
"""

from __future__ import annotations
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from signal_engine.analytics.metrics import DrawdownTracker, TradeStats
from signal_engine.core.errors import DataUnavailable, GatewayError
from signal_engine.core.logger import trade_event
from signal_engine.core.types import ClosureEvent, OrderType, SignalSide, Trade, TradeParams
from signal_engine.data.base import MarketDataSource
from signal_engine.execution.base import (
    Balance, ExchangeGateway, OrderResult, CANCELED, FILLED, NEW,
)
from signal_engine.storage.snapshot import Snapshot, SnapshotStore

logger = logging.getLogger("signal_engine.execution.paper")


@dataclass
class _NetPosition:
    side: SignalSide
    quantity: float
    entry_price: float


@dataclass
class _RestingOrder:
    order_id: str
    params: TradeParams
    kind: str  # "entry" | "take_profit" | "stop_loss"
    trigger: float
    status: str = NEW
    fill_price: Optional[float] = None


class PaperGateway(ExchangeGateway):

    def __init__(
        self,
        initial_balance: float = 1000.0,
        market_data: Optional[MarketDataSource] = None,
        store: Optional[SnapshotStore] = None,
        price_timeframe: str = "1m",
    ):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.market_data = market_data
        self.price_timeframe = price_timeframe
        self.store = store
        self._prices: Dict[str, float] = {}
        self._positions: Dict[str, _NetPosition] = {}
        self._orders: Dict[str, _RestingOrder] = {}
        self.free = initial_balance
        self.stats = TradeStats()
        self.trades: List[Trade] = []
        self._drawdown = DrawdownTracker(initial_balance)

        snapshot = store.load() if store is not None else None
        if snapshot is not None:
            self.free = snapshot.balance
            self.stats = snapshot.stats
            self.trades = list(snapshot.trades)
            self._drawdown = DrawdownTracker(snapshot.balance)
            self._drawdown.max_drawdown = snapshot.stats.max_drawdown
            peak = max((t.balance for t in self.trades), default=snapshot.balance)
            self._drawdown.peak = max(peak, snapshot.balance)
        logger.info("Paper trading balance: %.2f USDT", self.free)

    def _next_id(self) -> str:
        return f"SIM_{next(self._ids)}"

    def set_price(self, symbol: str, price: float) -> None:
        """Pin the market price for a symbol (overrides market data)."""
        with self._lock:
            self._prices[symbol] = float(price)

    def get_market_price(self, symbol: str) -> float:
        with self._lock:
            pinned = self._prices.get(symbol)
        if pinned is not None:
            return pinned
        if self.market_data is None:
            raise GatewayError(f"no price available for {symbol}")
        try:
            bars = self.market_data.get_bars(symbol, self.price_timeframe, limit=1)
        except DataUnavailable as e:
            raise GatewayError(f"no price available for {symbol}: {e}", upstream=str(e)) from e
        if bars.empty:
            raise GatewayError(f"no price available for {symbol}")
        return float(bars["close"].iloc[-1])

    def _reserved(self) -> float:
        return sum(p.quantity * p.entry_price for p in self._positions.values())

    def _fill(self, params: TradeParams, price: float) -> float:
        """Apply a fill to the net position and balance. Returns the filled quantity."""
        pos = self._positions.get(params.symbol)
        if params.reduce_only:
            if pos is None or pos.side == params.side:
                raise GatewayError(f"reduce-only order rejected: no {params.side.opposite.value} position on {params.symbol}")
            qty = min(params.quantity, pos.quantity)
            if pos.side == SignalSide.LONG:
                pnl = (price - pos.entry_price) * qty
            else:
                pnl = (pos.entry_price - price) * qty
            self.free += pos.entry_price * qty + pnl
            pos.quantity -= qty
            if pos.quantity <= 1e-12:
                del self._positions[params.symbol]
            return qty

        cost = params.quantity * price
        if cost > self.free:
            raise GatewayError(f"insufficient simulated balance: {self.free:.2f} < {cost:.2f}")
        self.free -= cost
        if pos is None:
            self._positions[params.symbol] = _NetPosition(params.side, params.quantity, price)
        elif pos.side == params.side:
            total = pos.quantity + params.quantity
            pos.entry_price = (pos.entry_price * pos.quantity + price * params.quantity) / total
            pos.quantity = total
        else:
            raise GatewayError(f"opposite position open on {params.symbol}; close it first")
        return params.quantity

    def place_order(self, params: TradeParams) -> OrderResult:
        if params.quantity <= 0:
            raise GatewayError(f"invalid quantity {params.quantity}")
        price = self.get_market_price(params.symbol)
        with self._lock:
            order_id = self._next_id()
            if params.order_type == OrderType.LIMIT and not params.reduce_only:
                self._orders[order_id] = _RestingOrder(order_id, params, "entry", params.entry_price)
                logger.info("Paper limit %s %s %s @ %.6f resting", order_id, params.symbol, params.side.value, params.entry_price)
                return OrderResult(order_id=order_id, status=NEW, quantity=params.quantity)
            qty = self._fill(params, price)
            children = [] if params.reduce_only else self._attach_children(params, qty)
        logger.info("Paper fill %s %s %s qty=%.6f @ %.6f", order_id, params.symbol, params.side.value, qty, price)
        return OrderResult(order_id=order_id, status=FILLED, fill_price=price, quantity=qty, child_order_ids=children)

    def _attach_children(self, params: TradeParams, quantity: float) -> List[str]:
        children = []
        for kind, trigger in (("take_profit", params.take_profit_price), ("stop_loss", params.stop_price)):
            if not trigger:
                continue
            child = TradeParams(
                symbol=params.symbol,
                side=params.side.opposite,
                order_type=OrderType.MARKET,
                quantity=quantity,
                entry_price=trigger,
                reduce_only=True,
            )
            order_id = self._next_id()
            self._orders[order_id] = _RestingOrder(order_id, child, kind, trigger)
            children.append(order_id)
        return children

    def attach_protective_orders(self, params: TradeParams, quantity: Optional[float] = None) -> List[str]:
        with self._lock:
            return self._attach_children(params, quantity if quantity is not None else params.quantity)

    def _triggered(self, order: _RestingOrder, price: float) -> bool:
        side = order.params.side
        if order.kind == "entry":
            return price <= order.trigger if side == SignalSide.LONG else price >= order.trigger
        # children close the position: side is the closing side
        if order.kind == "take_profit":
            return price >= order.trigger if side == SignalSide.SHORT else price <= order.trigger
        return price <= order.trigger if side == SignalSide.SHORT else price >= order.trigger

    def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise GatewayError(f"unknown order {order_id}")
        if order.status == NEW:
            price = self.get_market_price(symbol)
            with self._lock:
                if order.status == NEW and self._triggered(order, price):
                    fill_price = order.trigger if order.kind != "stop_loss" else price
                    self._fill(order.params, fill_price)
                    order.status = FILLED
                    order.fill_price = fill_price
                    logger.info("Paper %s %s filled @ %.6f", order.kind, order_id, fill_price)
        return OrderResult(order_id=order_id, status=order.status, fill_price=order.fill_price, quantity=order.params.quantity)

    def cancel_order(self, symbol: str, order_id: str) -> None:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise GatewayError(f"unknown order {order_id}")
            if order.status == NEW:
                order.status = CANCELED
        logger.info("Paper order cancelled: %s", order_id)

    def get_balance(self) -> Balance:
        with self._lock:
            return Balance(free=self.free, total=self.free + self._reserved())

    def get_open_positions(self) -> List[dict]:
        with self._lock:
            return [
                {"symbol": s, "side": p.side.value, "quantity": p.quantity, "entry_price": p.entry_price}
                for s, p in self._positions.items()
            ]

    def on_position_closed(self, event: ClosureEvent) -> None:
        """Closure listener: record the trade, update stats and persist the snapshot."""
        with self._lock:
            balance = self.free + self._reserved()
            self.stats.record(event.pnl)
            drawdown = self._drawdown.update(event.pnl)
            self.stats.max_drawdown = self._drawdown.max_drawdown
            trade = Trade(
                symbol=event.symbol,
                side=event.side,
                quantity=event.quantity,
                entry_price=event.entry_price,
                exit_price=event.exit_price,
                pnl=event.pnl,
                entry_time=event.opened_at,
                exit_time=event.closed_at,
                exit_reason=event.reason,
                balance=balance,
                drawdown=drawdown,
            )
            self.trades.append(trade)
            snapshot = Snapshot(balance=balance, stats=self.stats, trades=list(self.trades))
        trade_event("paper_closed", symbol=event.symbol, side=event.side.value, pnl=round(event.pnl, 4),
                    reason=event.reason, balance=round(balance, 2))
        if self.store is not None:
            try:
                self.store.save(snapshot)
            except OSError as e:
                logger.error("Could not save paper trading snapshot: %s", e)
