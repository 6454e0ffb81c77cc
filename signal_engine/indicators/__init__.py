"""Technical indicators (numpy)."""

from signal_engine.indicators.technical import (
    ema,
    atr,
    mfi,
    adx,
    bollinger_width,
    relative_volume,
    alpha_trend,
)

__all__ = ["ema", "atr", "mfi", "adx", "bollinger_width", "relative_volume", "alpha_trend"]
