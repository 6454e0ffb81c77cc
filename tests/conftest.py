"""Shared fixtures: OHLCV frame builders, a scriptable exchange gateway, fixed clocks."""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pandas as pd
import pytest

from signal_engine.core.config import Config
from signal_engine.core.errors import GatewayError
from signal_engine.core.types import BAR_COLUMNS, OrderType, Signal, SignalSide, TradeParams
from signal_engine.execution.base import Balance, ExchangeGateway, OrderResult, FILLED, NEW

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_frame(closes, highs=None, lows=None, volumes=None, minutes=15, start=START) -> pd.DataFrame:
    """OHLCV frame; highs/lows default to close +/- 1, volume to 1000."""
    n = len(closes)
    highs = highs if highs is not None else [c + 1 for c in closes]
    lows = lows if lows is not None else [c - 1 for c in closes]
    volumes = volumes if volumes is not None else [1000.0] * n
    rows = [
        [start + timedelta(minutes=minutes * i), closes[i], highs[i], lows[i], closes[i], volumes[i]]
        for i in range(n)
    ]
    return pd.DataFrame(rows, columns=BAR_COLUMNS)


def trending_frame(n=260, start_price=100.0, step=0.5, minutes=15) -> pd.DataFrame:
    return make_frame([start_price + step * i for i in range(n)], minutes=minutes)


def crossover_frame() -> pd.DataFrame:
    """15 flat bars (H101/L99/C100) then 5 bars at H106/L104/C105: one BUY at index 15."""
    highs = [101.0] * 15 + [106.0] * 5
    lows = [99.0] * 15 + [104.0] * 5
    closes = [100.0] * 15 + [105.0] * 5
    return make_frame(closes, highs=highs, lows=lows)


def make_signal(action=SignalSide.LONG, price=100.0, symbol="ETHUSDT", timeframe="15m") -> Signal:
    return Signal(
        strategy="test",
        action=action,
        symbol=symbol,
        timeframe=timeframe,
        price=price,
        timestamp=START,
    )


def entry_params(side=SignalSide.LONG, price=100.0, quantity=0.1, symbol="ETHUSDT", tp=0.5, sl=0.3) -> TradeParams:
    if side == SignalSide.LONG:
        take_profit, stop = price * (1 + tp / 100), price * (1 - sl / 100)
    else:
        take_profit, stop = price * (1 - tp / 100), price * (1 + sl / 100)
    return TradeParams(
        symbol=symbol,
        side=side,
        order_type=OrderType.MARKET,
        quantity=quantity,
        entry_price=price,
        stop_price=stop,
        take_profit_price=take_profit,
    )


class FakeGateway(ExchangeGateway):
    """
    Fills market orders at the requested price. Limit entries rest when rest_limits
    is set. Failures and delays are switched on per test.
    """

    def __init__(self, free: float = 1000.0):
        self.free = free
        self.prices: Dict[str, float] = {}
        self.placed: List[TradeParams] = []
        self.cancelled: List[str] = []
        self.statuses: Dict[str, OrderResult] = {}
        self.children: List[str] = []
        self.fail_place = False
        self.fail_reduce_only = False
        self.fail_cancel = False
        self.rest_limits = False
        self.close_delay = 0.0
        self._ids = 0
        self._lock = threading.Lock()

    def _next_id(self) -> str:
        with self._lock:
            self._ids += 1
            return f"ORD{self._ids}"

    def place_order(self, params: TradeParams) -> OrderResult:
        if self.fail_place:
            raise GatewayError("exchange unavailable", upstream="-1001 DISCONNECTED")
        if params.reduce_only:
            if self.fail_reduce_only:
                raise GatewayError("reduce-only rejected", upstream="-2022 ReduceOnly Order is rejected")
            if self.close_delay:
                time.sleep(self.close_delay)
        with self._lock:
            self.placed.append(params)
        order_id = self._next_id()
        if params.order_type == OrderType.LIMIT and self.rest_limits and not params.reduce_only:
            return OrderResult(order_id=order_id, status=NEW, quantity=params.quantity)
        children = list(self.children) if not params.reduce_only else []
        return OrderResult(order_id=order_id, status=FILLED, fill_price=params.entry_price,
                           quantity=params.quantity, child_order_ids=children)

    def cancel_order(self, symbol: str, order_id: str) -> None:
        if self.fail_cancel:
            raise GatewayError("cancel rejected", upstream="-2011 Unknown order sent")
        self.cancelled.append(order_id)

    def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        return self.statuses.get(order_id, OrderResult(order_id=order_id, status=NEW))

    def get_balance(self) -> Balance:
        return Balance(free=self.free, total=self.free)

    def get_open_positions(self) -> List[dict]:
        return []

    def get_market_price(self, symbol: str) -> float:
        if symbol not in self.prices:
            raise GatewayError(f"no price for {symbol}")
        return self.prices[symbol]

    def reduce_only_orders(self) -> List[TradeParams]:
        return [p for p in self.placed if p.reduce_only]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, **fields):
        self.events.append((event, fields))
        return True

    def names(self):
        return [e for e, _ in self.events]


class FixedClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FixedClock()
