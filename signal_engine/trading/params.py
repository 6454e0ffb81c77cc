"""
Order parameters from an approved signal.
Entry is offset from the signal price by entry_distance_percent (below for BUY,
above for SELL); a non-zero offset makes it a resting limit order.
"""

from __future__ import annotations
import math
from numbers import Real

from signal_engine.core.config import Config
from signal_engine.core.errors import InvalidPrice
from signal_engine.core.types import OrderType, Signal, SignalSide, TradeParams


def validate_price(price) -> float:
    """Return price as float or raise InvalidPrice (non-numeric, bool, NaN, inf, <= 0)."""
    if isinstance(price, bool) or not isinstance(price, Real):
        raise InvalidPrice(f"price must be numeric, got {price!r}")
    value = float(price)
    if math.isnan(value) or math.isinf(value) or value <= 0:
        raise InvalidPrice(f"price must be positive, got {price!r}")
    return value


def calculate_trade_params(
    signal: Signal,
    usdt_amount: float,
    tp_percent: float,
    sl_percent: float,
    entry_distance_percent: float = 0.0,
) -> TradeParams:
    price = validate_price(signal.price)
    if usdt_amount <= 0:
        raise ValueError(f"usdt_amount must be positive, got {usdt_amount}")

    d = entry_distance_percent / 100.0
    if signal.action == SignalSide.LONG:
        entry = price * (1 - d)
        take_profit = entry * (1 + tp_percent / 100.0)
        stop = entry * (1 - sl_percent / 100.0)
    else:
        entry = price * (1 + d)
        take_profit = entry * (1 - tp_percent / 100.0)
        stop = entry * (1 + sl_percent / 100.0)

    return TradeParams(
        symbol=signal.symbol,
        side=signal.action,
        order_type=OrderType.LIMIT if entry_distance_percent > 0 else OrderType.MARKET,
        quantity=usdt_amount / entry,
        entry_price=entry,
        stop_price=stop,
        take_profit_price=take_profit,
        time_in_force="GTC",
    )


def trade_params_from_config(signal: Signal, config: Config) -> TradeParams:
    """Same as calculate_trade_params with the current DEFAULT_* values."""
    return calculate_trade_params(
        signal,
        usdt_amount=config.default_usdt_amount,
        tp_percent=config.default_tp_percent,
        sl_percent=config.default_sl_percent,
        entry_distance_percent=config.entry_distance_percent,
    )


def close_params(symbol: str, position_side: SignalSide, quantity: float, price: float) -> TradeParams:
    """Reduce-only market order that takes `quantity` off a position."""
    return TradeParams(
        symbol=symbol,
        side=position_side.opposite,
        order_type=OrderType.MARKET,
        quantity=quantity,
        entry_price=price,
        reduce_only=True,
    )
