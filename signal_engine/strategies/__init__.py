from signal_engine.strategies.base import BaseStrategy
from signal_engine.strategies.alpha_trend import AlphaTrendStrategy

__all__ = ["BaseStrategy", "AlphaTrendStrategy"]
