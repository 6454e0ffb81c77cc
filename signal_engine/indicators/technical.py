"""
Indicator math over an OHLCV series (DataFrame with time/open/high/low/close/volume,
or a list of Bar). All functions are pure and read only the bars they are given,
so callers control lookahead by slicing the series.
"""

from __future__ import annotations
from typing import Sequence, Union

import numpy as np
import pandas as pd

from signal_engine.core.errors import InsufficientData
from signal_engine.core.types import Bar

Bars = Union[pd.DataFrame, Sequence[Bar]]


def _column(bars: Bars, name: str) -> np.ndarray:
    if isinstance(bars, pd.DataFrame):
        return bars[name].to_numpy(dtype=float)
    return np.array([getattr(b, name) for b in bars], dtype=float)


def _ohlc(bars: Bars):
    return _column(bars, "high"), _column(bars, "low"), _column(bars, "close")


def _true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """True range of each consecutive pair (len - 1 values)."""
    prev_close = close[:-1]
    return np.maximum.reduce([
        high[1:] - low[1:],
        np.abs(high[1:] - prev_close),
        np.abs(low[1:] - prev_close),
    ])


def _smoothed(values: np.ndarray, period: int) -> float:
    """SMA seed over the first `period` values, then s = (s*(period-1) + x) / period."""
    if len(values) < period:
        return 0.0
    s = float(values[:period].mean())
    for x in values[period:]:
        s = (s * (period - 1) + x) / period
    return s


def ema(bars: Bars, period: int) -> float:
    """Exponential moving average of closes, seeded with the SMA of the first `period` closes."""
    closes = _column(bars, "close")
    if len(closes) < period:
        raise InsufficientData(f"EMA{period} needs {period} bars, got {len(closes)}")
    k = 2.0 / (period + 1)
    value = float(closes[:period].mean())
    for c in closes[period:]:
        value = c * k + value * (1 - k)
    return value


def atr(bars: Bars, period: int = 14) -> float:
    """
    Simple mean true range over the trailing `period` bars.
    The window holds period-1 consecutive pairs; their sum is divided by `period`.
    Returns 0.0 (neutral) when fewer than `period` bars are available.
    """
    high, low, close = _ohlc(bars)
    if len(close) < period:
        return 0.0
    tr = _true_range(high[-period:], low[-period:], close[-period:])
    return float(tr.sum() / period)


def mfi(bars: Bars, period: int = 14) -> float:
    """Money Flow Index over the trailing `period` bars. Returns 50.0 (neutral) on a short window."""
    high, low, close = _ohlc(bars)
    if len(close) < period:
        return 50.0
    volume = _column(bars, "volume")[-period:]
    typical = (high[-period:] + low[-period:] + close[-period:]) / 3.0
    flow = typical[1:] * volume[1:]
    up = typical[1:] > typical[:-1]
    down = typical[1:] < typical[:-1]
    positive = float(flow[up].sum())
    negative = float(flow[down].sum())
    if negative == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + positive / negative)


def adx(bars: Bars, period: int = 14) -> float:
    """
    Directional movement strength as a single-pass DX:
    |+DI - -DI| / (+DI + -DI) * 100 with +DM, -DM and TR each smoothed once.
    The DX is not smoothed again into a textbook ADX.
    """
    high, low, close = _ohlc(bars)
    if len(close) < period * 2:
        raise InsufficientData(f"ADX{period} needs {period * 2} bars, got {len(close)}")
    tr = _true_range(high, low, close)
    up_move = high[1:] - high[:-1]
    down_move = low[:-1] - low[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    s_tr = _smoothed(tr, period)
    if s_tr == 0:
        return 0.0
    plus_di = _smoothed(plus_dm, period) / s_tr * 100
    minus_di = _smoothed(minus_dm, period) / s_tr * 100
    if plus_di + minus_di == 0:
        return 0.0
    return float(abs(plus_di - minus_di) / (plus_di + minus_di) * 100)


def bollinger_width(bars: Bars, period: int = 20, std_dev_multiplier: float = 2.0) -> float:
    """(upper - lower) / middle over the last `period` closes, population std."""
    closes = _column(bars, "close")
    if len(closes) < period:
        raise InsufficientData(f"BB width needs {period} bars, got {len(closes)}")
    window = closes[-period:]
    middle = float(window.mean())
    if middle == 0:
        raise InsufficientData("BB width undefined for zero mean price")
    std = float(window.std())
    return (2 * std * std_dev_multiplier) / middle


def relative_volume(bars: Bars, period: int = 20) -> float:
    """Current volume over the mean of the previous `period` volumes (current excluded)."""
    volume = _column(bars, "volume")
    if len(volume) < period + 1:
        raise InsufficientData(f"rVOL needs {period + 1} bars, got {len(volume)}")
    average = float(volume[-period - 1:-1].mean())
    if average == 0:
        raise InsufficientData("rVOL undefined: average volume is zero")
    return float(volume[-1] / average)


def alpha_trend(bars: Bars, index: int, atr_value: float, mfi_value: float, coeff: float = 1.0) -> float:
    """
    Non-recursive AlphaTrend at `index`. The previous value is approximated by the
    midpoint of bar index-1 rather than the prior AlphaTrend.
    """
    if index < 1:
        return 0.0
    high = _column(bars, "high")
    low = _column(bars, "low")
    prev = (high[index - 1] + low[index - 1]) / 2.0
    up_t = low[index] - atr_value * coeff
    down_t = high[index] + atr_value * coeff
    if mfi_value >= 50:
        return float(prev if up_t < prev else up_t)
    return float(prev if down_t > prev else down_t)
