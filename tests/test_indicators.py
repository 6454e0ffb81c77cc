"""Unit tests for indicators.technical."""

import math

import pytest

from signal_engine.core.errors import InsufficientData
from signal_engine.core.types import Bar
from signal_engine.indicators import adx, alpha_trend, atr, bollinger_width, ema, mfi, relative_volume
from conftest import START, make_frame, trending_frame


def test_ema_short_window_raises():
    with pytest.raises(InsufficientData):
        ema(make_frame([100.0] * 199), 200)


def test_ema_constant_series():
    assert ema(make_frame([50.0] * 30), 10) == pytest.approx(50.0)


def test_ema_is_deterministic():
    frame = trending_frame(300)
    first = ema(frame, 200)
    assert ema(frame, 200) == first
    assert frame["close"].iloc[0] == 100.0


def test_ema_seeded_with_sma():
    # SMA of 1..3 = 2, then 4*0.5 + 2*0.5 = 3
    assert ema(make_frame([1.0, 2.0, 3.0, 4.0]), 3) == pytest.approx(3.0)


def test_atr_short_window_is_neutral():
    assert atr(make_frame([100.0] * 5), 14) == 0.0


def test_atr_sums_pairs_over_period():
    # 13 pairs with TR 2 divided by 14
    frame = make_frame([100.0] * 14)
    assert atr(frame, 14) == pytest.approx(26 / 14)


def test_mfi_short_window_is_neutral():
    assert mfi(make_frame([100.0] * 3), 14) == 50.0


def test_mfi_only_rising_is_100():
    assert mfi(trending_frame(14), 14) == 100.0


def test_mfi_mixed_flow():
    frame = make_frame([100.0, 101.0, 100.0], highs=[100.0, 101.0, 100.0], lows=[100.0, 101.0, 100.0])
    # positive 101*1000, negative 100*1000
    expected = 100 - 100 / (1 + 101 / 100)
    assert mfi(frame, 3) == pytest.approx(expected)


def test_adx_short_window_raises():
    with pytest.raises(InsufficientData):
        adx(make_frame([100.0] * 27), 14)


def test_adx_one_directional_trend():
    assert adx(trending_frame(40, step=1.0), 14) == pytest.approx(100.0)


def test_adx_flat_series_is_zero():
    assert adx(make_frame([100.0] * 40), 14) == 0.0


def test_bollinger_width_flat_is_zero():
    assert bollinger_width(make_frame([100.0] * 20)) == 0.0


def test_bollinger_width_short_raises():
    with pytest.raises(InsufficientData):
        bollinger_width(make_frame([100.0] * 19))


def test_bollinger_width_value():
    closes = [99.0, 101.0] * 10
    # population std 1, mean 100 -> (2 * 1 * 2) / 100
    assert bollinger_width(make_frame(closes)) == pytest.approx(0.04)


def test_relative_volume_excludes_current_bar():
    frame = make_frame([100.0] * 21, volumes=[100.0] * 20 + [250.0])
    assert relative_volume(frame, 20) == pytest.approx(2.5)


def test_relative_volume_short_raises():
    with pytest.raises(InsufficientData):
        relative_volume(make_frame([100.0] * 20), 20)


def test_relative_volume_zero_average_raises():
    with pytest.raises(InsufficientData):
        relative_volume(make_frame([100.0] * 21, volumes=[0.0] * 20 + [10.0]), 20)


def test_alpha_trend_first_index_is_zero():
    assert alpha_trend(make_frame([100.0, 101.0]), 0, 1.0, 60.0) == 0.0


def test_alpha_trend_bullish_branch():
    frame = make_frame([100.0, 101.0])  # bar 0: H101 L99, bar 1: H102 L100
    # prev midpoint 100; up_t = 100 - 1 = 99 < 100 -> 100
    assert alpha_trend(frame, 1, 1.0, 60.0) == 100.0
    # without ATR up_t = 100 is not below prev -> 100; with low 101 -> 101
    frame.loc[1, "low"] = 101.0
    assert alpha_trend(frame, 1, 0.0, 60.0) == 101.0


def test_alpha_trend_bearish_branch():
    frame = make_frame([100.0, 99.0])  # bar 1: H100 L98
    # down_t = 100 + 1 = 101 > prev 100 -> 100
    assert alpha_trend(frame, 1, 1.0, 40.0) == 100.0
    frame.loc[1, "high"] = 99.0
    assert alpha_trend(frame, 1, 0.0, 40.0) == 99.0


def test_indicators_accept_bar_lists():
    frame = make_frame([100.0 + i for i in range(30)])
    bars = [
        Bar(time=START, open=r.open, high=r.high, low=r.low, close=r.close, volume=r.volume)
        for r in frame.itertuples()
    ]
    assert ema(bars, 20) == pytest.approx(ema(frame, 20))
    assert atr(bars) == pytest.approx(atr(frame))
    assert math.isclose(relative_volume(bars), relative_volume(frame))
