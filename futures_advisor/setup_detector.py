"""
Trend classification and rule-based setup detectors
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .indicators import closes, sma
from .models import (
    Candle, IndicatorSnapshot, SetupCandidate, SetupDirection, SetupStrategy,
    TrendDirection
)

TREND_BUFFER = 0.001
BREAKOUT_BUFFER = 0.001
RANGE_PERIOD = 20
BREAKOUT_LOOKBACK = 12

MIN_BARS_BREAKOUT_RETEST = 40
MIN_BARS_TREND_PULLBACK = 60
MIN_BARS_CONTINUATION = 80


@dataclass(frozen=True)
class DetectorInput:
    """Everything a detector needs for one symbol/timeframe"""
    symbol: str
    timeframe: str
    trend4h: TrendDirection
    candles: Sequence[Candle]
    indicators: IndicatorSnapshot
    created_at: str
    max_leverage: float
    target_roi_pct: float


def classify_trend(candles: Sequence[Candle]) -> TrendDirection:
    """Higher-timeframe trend from SMA50 vs SMA200 with a 0.1% neutral band"""
    values = closes(candles)
    return classify_trend_from_averages(sma(values, 50), sma(values, 200))


def classify_trend_from_averages(sma50: Optional[float], sma200: Optional[float]) -> TrendDirection:
    if sma50 is None or sma200 is None:
        return TrendDirection.NEUTRAL
    if sma50 > sma200 * (1 + TREND_BUFFER):
        return TrendDirection.UP
    if sma50 < sma200 * (1 - TREND_BUFFER):
        return TrendDirection.DOWN
    return TrendDirection.NEUTRAL


def clamp_score(score: float) -> int:
    return int(max(0, min(100, round(score))))


def risk_reward(direction: SetupDirection, entry: float, stop: float, target: float) -> Optional[float]:
    """Reward/risk ratio, None when stop or target sit on the wrong side of entry"""
    if direction == SetupDirection.LONG:
        risk = entry - stop
        reward = target - entry
    else:
        risk = stop - entry
        reward = entry - target
    if risk <= 0 or reward <= 0:
        return None
    return reward / risk


def take_profit_from_target(entry: float, direction: SetupDirection,
                            max_leverage: float, target_roi_pct: float) -> float:
    """Target price giving target_roi_pct account ROI at max_leverage"""
    move_pct = target_roi_pct / max(1.0, max_leverage) / 100
    if direction == SetupDirection.LONG:
        return entry * (1 + move_pct)
    return entry * (1 - move_pct)


def tolerance(last_close: float, atr14: Optional[float]) -> float:
    """Price band treated as 'near a level'"""
    pct_based = last_close * 0.0015
    atr_based = atr14 * 0.25 if atr14 else 0.0
    return max(pct_based, atr_based)


def volume_boost(candles: Sequence[Candle]) -> int:
    if len(candles) < 25:
        return 0
    volumes = [c.volume for c in candles]
    vol_sma20 = sma(volumes, 20)
    if not vol_sma20 or vol_sma20 <= 0:
        return 0
    return 5 if volumes[-1] > vol_sma20 * 1.2 else 0


def score_base(trend_aligned: bool, rr: Optional[float], rsi14: Optional[float],
               direction: SetupDirection, candles: Sequence[Candle]) -> Tuple[float, List[str]]:
    """Shared score before the per-strategy bonus"""
    score = 45.0
    reasons: List[str] = []

    if trend_aligned:
        score += 20
        reasons.append("Aligned with 4h trend filter.")
    else:
        score -= 20
        reasons.append("Not aligned with 4h trend filter.")

    if rr is not None:
        if rr >= 2.5:
            score += 18
        elif rr >= 2.0:
            score += 14
        elif rr >= 1.5:
            score += 10
        elif rr >= 1.2:
            score += 6

    if rsi14 is not None:
        if direction == SetupDirection.LONG:
            if 45 <= rsi14 <= 65:
                score += 10
                reasons.append("RSI in a healthy long continuation range.")
            elif rsi14 > 75:
                score -= 6
                reasons.append("RSI is high (risk of pullback).")
        else:
            if 35 <= rsi14 <= 55:
                score += 10
                reasons.append("RSI in a healthy short continuation range.")
            elif rsi14 < 25:
                score -= 6
                reasons.append("RSI is low (risk of bounce).")

    score += volume_boost(candles)
    return score, reasons


def _wanted_direction(trend: TrendDirection) -> Optional[SetupDirection]:
    if trend == TrendDirection.UP:
        return SetupDirection.LONG
    if trend == TrendDirection.DOWN:
        return SetupDirection.SHORT
    return None


def _sides_valid(direction: SetupDirection, entry: float, stop: float, target: float) -> bool:
    if direction == SetupDirection.LONG:
        return stop < entry < target
    return target < entry < stop


def detect_breakout_retest(data: DetectorInput) -> List[SetupCandidate]:
    """Recent range breakout whose level is being retested by the current bar"""
    candles = data.candles
    if len(candles) < MIN_BARS_BREAKOUT_RETEST:
        return []
    direction = _wanted_direction(data.trend4h)
    if direction is None:
        return []

    current = candles[-1]
    tol = tolerance(current.close, data.indicators.atr14)

    # Latest qualifying breakout bar wins
    breakout_level = None
    for i in range(len(candles) - BREAKOUT_LOOKBACK - 1, len(candles) - 1):
        if i - RANGE_PERIOD < 0:
            continue
        prior = candles[i - RANGE_PERIOD:i]
        bar = candles[i]
        if direction == SetupDirection.LONG:
            max_high = max(c.high for c in prior)
            if bar.close > max_high * (1 + BREAKOUT_BUFFER):
                breakout_level = max_high
        else:
            min_low = min(c.low for c in prior)
            if bar.close < min_low * (1 - BREAKOUT_BUFFER):
                breakout_level = min_low

    if not breakout_level:
        return []

    # Wick back into the level, close held on the breakout side
    if direction == SetupDirection.LONG:
        retest_ok = (current.low <= breakout_level + tol
                     and current.close >= breakout_level - tol
                     and current.is_bullish)
    else:
        retest_ok = (current.high >= breakout_level - tol
                     and current.close <= breakout_level + tol
                     and current.is_bearish)
    if not retest_ok:
        return []

    entry = breakout_level
    stop_distance = (data.indicators.atr14 or tol) * 1.5
    stop_loss = entry - stop_distance if direction == SetupDirection.LONG else entry + stop_distance
    take_profit = take_profit_from_target(entry, direction, data.max_leverage, data.target_roi_pct)
    if not _sides_valid(direction, entry, stop_loss, take_profit):
        return []

    rr = risk_reward(direction, entry, stop_loss, take_profit)
    score, reasons = score_base(True, rr, data.indicators.rsi14, direction, candles)
    reasons.append("Breakout occurred recently; current candle is a retest near the breakout level.")

    if direction == SetupDirection.LONG:
        invalidation = f"Close below {max(0.0, entry - tol):.4f} on {data.timeframe}."
    else:
        invalidation = f"Close above {max(0.0, entry + tol):.4f} on {data.timeframe}."

    return [SetupCandidate(
        symbol=data.symbol,
        timeframe=data.timeframe,
        trend4h=data.trend4h,
        direction=direction,
        strategy=SetupStrategy.BREAKOUT_RETEST,
        score=clamp_score(score + 10),
        entry=entry,
        entry_zone=(entry - tol * 0.5, entry + tol * 0.5),
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=rr,
        reasons=tuple(reasons),
        invalidation=(invalidation,),
        created_at=data.created_at
    )]


def detect_trend_pullback(data: DetectorInput) -> List[SetupCandidate]:
    """Pullback into SMA20/SMA50 followed by a reclaim bar in the trend direction"""
    candles = data.candles
    if len(candles) < MIN_BARS_TREND_PULLBACK:
        return []
    direction = _wanted_direction(data.trend4h)
    if direction is None:
        return []

    ind = data.indicators
    if not ind.sma20 or not ind.sma50:
        return []

    current = candles[-1]
    prev = candles[-2]
    tol = tolerance(current.close, ind.atr14)
    is_long = direction == SetupDirection.LONG

    if is_long:
        near20 = current.low <= ind.sma20 + tol
        near50 = current.low <= ind.sma50 + tol
        reclaim = current.close >= ind.sma20
        momentum = current.is_bullish
        pullback_bar = prev.close < prev.open
        rsi_ok = ind.rsi14 is None or 40 <= ind.rsi14 <= 65
    else:
        near20 = current.high >= ind.sma20 - tol
        near50 = current.high >= ind.sma50 - tol
        reclaim = current.close <= ind.sma20
        momentum = current.is_bearish
        pullback_bar = prev.close > prev.open
        rsi_ok = ind.rsi14 is None or 35 <= ind.rsi14 <= 60

    if not (reclaim and momentum and pullback_bar and rsi_ok and (near20 or near50)):
        return []

    entry = current.close
    stop_distance = (ind.atr14 or tol) * 1.2
    stop_loss = current.low - stop_distance if is_long else current.high + stop_distance
    take_profit = take_profit_from_target(entry, direction, data.max_leverage, data.target_roi_pct)
    if not _sides_valid(direction, entry, stop_loss, take_profit):
        return []

    rr = risk_reward(direction, entry, stop_loss, take_profit)
    score, reasons = score_base(True, rr, ind.rsi14, direction, candles)
    reasons.append(f"Pullback into moving averages ({'SMA20' if near20 else 'SMA50'}) with reclaim.")
    word = "below" if is_long else "above"

    return [SetupCandidate(
        symbol=data.symbol,
        timeframe=data.timeframe,
        trend4h=data.trend4h,
        direction=direction,
        strategy=SetupStrategy.TREND_PULLBACK,
        score=clamp_score(score + 8),
        entry=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=rr,
        reasons=tuple(reasons),
        invalidation=(f"Close {word} {stop_loss:.4f} on {data.timeframe}.",),
        created_at=data.created_at
    )]


def detect_continuation(data: DetectorInput) -> List[SetupCandidate]:
    """Close beyond the prior 20-bar range with aligned moving averages"""
    candles = data.candles
    if len(candles) < MIN_BARS_CONTINUATION:
        return []
    direction = _wanted_direction(data.trend4h)
    if direction is None:
        return []

    ind = data.indicators
    if not ind.sma20 or not ind.sma50:
        return []

    is_long = direction == SetupDirection.LONG
    ma_aligned = ind.sma20 > ind.sma50 if is_long else ind.sma20 < ind.sma50
    if not ma_aligned:
        return []

    current = candles[-1]
    prior = candles[-RANGE_PERIOD - 1:-1]
    max_high = max(c.high for c in prior)
    min_low = min(c.low for c in prior)

    if is_long:
        breakout_ok = current.close > max_high * (1 + BREAKOUT_BUFFER)
    else:
        breakout_ok = current.close < min_low * (1 - BREAKOUT_BUFFER)
    if not breakout_ok:
        return []

    entry = current.close
    stop_distance = (ind.atr14 or entry * 0.002) * 1.8
    stop_loss = entry - stop_distance if is_long else entry + stop_distance
    take_profit = take_profit_from_target(entry, direction, data.max_leverage, data.target_roi_pct)
    if not _sides_valid(direction, entry, stop_loss, take_profit):
        return []

    rr = risk_reward(direction, entry, stop_loss, take_profit)
    score, reasons = score_base(True, rr, ind.rsi14, direction, candles)
    reasons.append("Trend continuation breakout from recent range.")

    if is_long:
        invalidation = f"Close back inside the prior range (below {max_high:.4f})."
    else:
        invalidation = f"Close back inside the prior range (above {min_low:.4f})."

    return [SetupCandidate(
        symbol=data.symbol,
        timeframe=data.timeframe,
        trend4h=data.trend4h,
        direction=direction,
        strategy=SetupStrategy.CONTINUATION,
        score=clamp_score(score + 6),
        entry=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=rr,
        reasons=tuple(reasons),
        invalidation=(invalidation,),
        created_at=data.created_at
    )]


DETECTORS = (detect_breakout_retest, detect_trend_pullback, detect_continuation)


def dedupe_setups(setups: Sequence[SetupCandidate]) -> List[SetupCandidate]:
    """Keep the highest score per (symbol, timeframe, strategy, direction)"""
    best: Dict[Tuple[str, str, str, str], SetupCandidate] = {}
    for setup in setups:
        existing = best.get(setup.dedupe_key)
        if existing is None or setup.score > existing.score:
            best[setup.dedupe_key] = setup
    return list(best.values())


def run_detectors(data: DetectorInput) -> List[SetupCandidate]:
    """Run every detector over one symbol/timeframe window"""
    setups: List[SetupCandidate] = []
    for detector in DETECTORS:
        setups.extend(detector(data))
    return dedupe_setups(setups)
