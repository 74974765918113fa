import sys
from pathlib import Path

# Ensure project root on sys.path before importing the package
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from futures_advisor.models import Candle

MINUTE_MS = 60_000


def candle(i, o, h, l, c, v=1.0, step_ms=MINUTE_MS):
    return Candle(open_time=i * step_ms, open=o, high=h, low=l, close=c,
                  volume=v, close_time=(i + 1) * step_ms - 1)


def build_breakout_series():
    """20-bar range capped at 100, breakout close 100.5 on bar 28, retest on bar 40"""
    candles = []
    for i in range(27):
        candles.append(candle(i, 99.6, 100.0, 99.2, 99.7))
    candles.append(candle(27, 99.8, 100.7, 99.7, 100.5))
    for i in range(28, 39):
        candles.append(candle(i, 100.3, 100.6, 100.1, 100.4))
    candles.append(candle(39, 100.2, 100.7, 99.9, 100.6))
    return candles


def build_pullback_series():
    """Rising zigzag whose last bar reclaims SMA20 after a red bar"""
    candles = []
    prev_close = 100.0
    for i in range(60):
        close = 100 + 0.05 * i + (0.3 if i % 2 == 0 else -0.3)
        if i == 58:
            open_ = close + 0.2
        elif i == 59:
            open_ = close - 0.2
        else:
            open_ = prev_close
        low = min(open_, close) - 0.3
        high = max(open_, close) + 0.1
        candles.append(candle(i, open_, high, low, close))
        prev_close = close
    return candles


def build_continuation_series():
    """Steady uptrend ending with a close well above the prior 20-bar high"""
    candles = []
    for i in range(79):
        close = 100 + 0.1 * i
        candles.append(candle(i, close - 0.05, close + 0.05, close - 0.1, close))
    candles.append(candle(79, 107.9, 109.0, 107.85, 108.9))
    return candles


def mirror_series(candles, pivot=100.0):
    """Reflect prices around pivot, turning a LONG pattern into its SHORT twin"""
    return [
        candle(i, 2 * pivot - c.open, 2 * pivot - c.low, 2 * pivot - c.high, 2 * pivot - c.close,
               v=c.volume, step_ms=c.close_time + 1 - c.open_time)
        for i, c in enumerate(candles)
    ]


def build_trend_series(n=260, step=0.2, start=100.0):
    """Monotonic 4h series; step > 0 classifies UP, step < 0 DOWN"""
    candles = []
    for i in range(n):
        close = start + step * i
        candles.append(candle(i, close, close + 0.1, close - 0.1, close, step_ms=4 * 60 * MINUTE_MS))
    return candles


@pytest.fixture
def breakout_candles():
    return build_breakout_series()


@pytest.fixture
def pullback_candles():
    return build_pullback_series()


@pytest.fixture
def continuation_candles():
    return build_continuation_series()


@pytest.fixture
def uptrend_4h():
    return build_trend_series()


@pytest.fixture
def frozen_candles():
    """Candle map for two symbols with setups on both timeframes"""
    data = {}
    for symbol in ("BTCUSDC", "ETHUSDC"):
        data[f"{symbol}_4h"] = build_trend_series()
        data[f"{symbol}_15m"] = build_continuation_series()
        data[f"{symbol}_1h"] = build_breakout_series()
    return data
