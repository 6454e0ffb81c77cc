"""Core: config, types, errors, logging, scheduling."""

from signal_engine.core.config import load_config, Config
from signal_engine.core.errors import (
    EngineError,
    InsufficientData,
    InvalidPrice,
    DataUnavailable,
    GatewayError,
    DecisionError,
    DecisionTimeout,
)
from signal_engine.core.types import (
    Bar,
    Signal,
    SignalSide,
    FilterOutcome,
    ProcessResult,
    TradeParams,
    Position,
    ClosureEvent,
    Trade,
)
from signal_engine.core.logger import setup_logging
from signal_engine.core.scheduler import DeadlineScheduler

__all__ = [
    "load_config",
    "Config",
    "EngineError",
    "InsufficientData",
    "InvalidPrice",
    "DataUnavailable",
    "GatewayError",
    "DecisionError",
    "DecisionTimeout",
    "Bar",
    "Signal",
    "SignalSide",
    "FilterOutcome",
    "ProcessResult",
    "TradeParams",
    "Position",
    "ClosureEvent",
    "Trade",
    "setup_logging",
    "DeadlineScheduler",
]
