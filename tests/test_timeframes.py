"""Unit tests for utils.timeframes."""

from datetime import timedelta

import pytest

from signal_engine.utils.timeframes import timeframe_delta, timeframe_minutes


def test_timeframe_minutes():
    assert timeframe_minutes("5m") == 5
    assert timeframe_minutes("1h") == 60
    assert timeframe_minutes("4H") == 240
    assert timeframe_minutes("1d") == 1440
    assert timeframe_minutes("1w") == 10080


def test_timeframe_delta():
    assert timeframe_delta("15m") == timedelta(minutes=15)


def test_timeframe_invalid():
    with pytest.raises(ValueError):
        timeframe_minutes("1x")
