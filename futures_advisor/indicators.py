"""
Technical indicators over candle sequences
"""
import numpy as np
from typing import List, Optional, Sequence

from .models import Candle, IndicatorSnapshot


def sma(values: Sequence[float], period: int) -> Optional[float]:
    """Arithmetic mean of the last `period` values, None if there are fewer"""
    if period <= 0 or len(values) < period:
        return None
    window = values[len(values) - period:]
    total = 0.0
    for v in window:
        total += float(v)
    return total / period


def true_ranges(candles: Sequence[Candle]) -> np.ndarray:
    """True range of each bar after the first"""
    if len(candles) < 2:
        return np.array([], dtype=float)
    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)
    prev_close = closes[:-1]
    return np.maximum.reduce([
        highs[1:] - lows[1:],
        np.abs(highs[1:] - prev_close),
        np.abs(lows[1:] - prev_close)
    ])


def atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Wilder's average true range"""
    if period <= 0 or len(candles) < period + 1:
        return None

    trs = true_ranges(candles)
    value = sma(trs[:period].tolist(), period)
    for tr in trs[period:]:
        value = (value * (period - 1) + float(tr)) / period
    return value


def rsi(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Wilder's relative strength index of closes"""
    if period <= 0 or len(candles) < period + 1:
        return None

    changes = np.diff(np.array([c.close for c in candles], dtype=float))

    gain_sum = 0.0
    loss_sum = 0.0
    for change in changes[:period]:
        if change >= 0:
            gain_sum += float(change)
        else:
            loss_sum += float(-change)
    avg_gain = gain_sum / period
    avg_loss = loss_sum / period

    for change in changes[period:]:
        gain = float(change) if change > 0 else 0.0
        loss = float(-change) if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]


def compute_indicators(candles: Sequence[Candle]) -> IndicatorSnapshot:
    """Indicator snapshot at the last bar of the window"""
    close_values = closes(candles)
    return IndicatorSnapshot(
        atr14=atr(candles, 14),
        rsi14=rsi(candles, 14),
        sma20=sma(close_values, 20),
        sma50=sma(close_values, 50)
    )
