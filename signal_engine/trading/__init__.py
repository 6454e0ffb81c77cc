"""Trade parameters, position lifecycle and the trading engine."""

from signal_engine.trading.params import calculate_trade_params, close_params, trade_params_from_config, validate_price
from signal_engine.trading.lifecycle import PositionLifecycleManager
from signal_engine.trading.engine import SignalOutcome, TradingEngine

__all__ = [
    "calculate_trade_params",
    "close_params",
    "trade_params_from_config",
    "validate_price",
    "PositionLifecycleManager",
    "SignalOutcome",
    "TradingEngine",
]
