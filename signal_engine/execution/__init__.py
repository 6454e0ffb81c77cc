"""Execution: exchange gateway interface, Binance Futures and paper trading."""

from signal_engine.execution.base import ExchangeGateway, OrderResult, Balance
from signal_engine.execution.paper import PaperGateway

__all__ = ["ExchangeGateway", "OrderResult", "Balance", "PaperGateway"]
