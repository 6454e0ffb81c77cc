"""Utils: Telegram, timeframes, exchange filters."""

from signal_engine.utils.telegram import send_telegram, TelegramNotifier
from signal_engine.utils.timeframes import timeframe_minutes, timeframe_delta
from signal_engine.utils.exchange_filters import SymbolFilters, parse_symbol_filters

__all__ = [
    "send_telegram",
    "TelegramNotifier",
    "timeframe_minutes",
    "timeframe_delta",
    "SymbolFilters",
    "parse_symbol_filters",
]
