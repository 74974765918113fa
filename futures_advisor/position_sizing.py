"""
Risk-bounded position sizing and position risk helpers
"""
import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .config.models import RiskConfig
from .models import EquityTarget, EquityTargets, Position, PositionPlan, PositionSizing, SetupDirection

logger = logging.getLogger(__name__)


def round_to(value: float, decimals: int) -> float:
    factor = 10 ** decimals
    return round(value * factor) / factor


def calculate_position_sizing(
    wallet_equity: float,
    risk_per_trade_pct: float,
    entry: float,
    stop_loss: float,
    take_profit: float,
    direction: SetupDirection,
    max_leverage: Optional[float] = None
) -> Optional[PositionSizing]:
    """
    Size a trade so that hitting the stop loses risk_per_trade_pct of equity.

    Args:
        wallet_equity: Account equity in quote currency.
        risk_per_trade_pct: Percent of equity to risk (1.0 = 1%).
        entry: Planned entry price.
        stop_loss: Stop price.
        take_profit: Target price.
        direction: LONG or SHORT, kept for callers that log the plan.
        max_leverage: Optional leverage cap. When the raw size would need more,
            notional is capped at equity * max_leverage and the realised risk
            ends up below the nominal risk budget.

    Returns:
        PositionSizing, or None when the inputs do not allow a size.
    """
    if wallet_equity <= 0 or entry <= 0 or stop_loss <= 0 or take_profit <= 0:
        return None

    stop_distance = abs(entry - stop_loss)
    stop_distance_frac = stop_distance / entry
    if stop_distance_frac <= 0 or stop_distance_frac >= 1:
        return None

    risk_budget = wallet_equity * (risk_per_trade_pct / 100)
    notional = risk_budget / stop_distance_frac
    leverage = notional / wallet_equity

    if max_leverage and leverage > max_leverage:
        logger.debug(f"{direction.value} size capped by leverage {leverage:.2f} > {max_leverage}")
        leverage = max_leverage
        notional = wallet_equity * max_leverage

    quantity = notional / entry
    actual_risk = quantity * stop_distance
    reward = quantity * abs(take_profit - entry)
    risk_pct = actual_risk / wallet_equity * 100

    return PositionSizing(
        quantity=round_to(quantity, 6),
        notional_usd=round_to(notional, 2),
        risk_usd=round_to(actual_risk, 2),
        reward_usd=round_to(reward, 2),
        risk_pct=round_to(risk_pct, 2),
        leverage_required=round_to(leverage, 2)
    )


def position_direction(position: Position) -> str:
    """'LONG', 'SHORT' or 'FLAT'"""
    if position.position_side == "LONG":
        return "LONG"
    if position.position_side == "SHORT":
        return "SHORT"
    if position.amount > 0:
        return "LONG"
    if position.amount < 0:
        return "SHORT"
    return "FLAT"


def liquidation_distance_pct(direction: str, mark: float, liquidation: Optional[float]) -> Optional[float]:
    """Signed distance from mark to liquidation in percent of mark"""
    if mark is None or mark <= 0 or not liquidation or liquidation <= 0:
        return None
    if direction == "LONG":
        return (mark - liquidation) / mark * 100
    if direction == "SHORT":
        return (liquidation - mark) / mark * 100
    return None


def pct_distance(reference: float, price: Optional[float]) -> Optional[float]:
    """Absolute distance between two prices in percent of reference"""
    if price is None or not reference:
        return None
    return abs(reference - price) / abs(reference) * 100


def take_profit_from_roi(entry: float, direction: str, leverage: float, target_roi_pct: float) -> Optional[float]:
    """Price where the position's own leverage turns the move into target_roi_pct ROI"""
    if entry <= 0 or leverage <= 0 or target_roi_pct <= 0:
        return None
    move_pct = target_roi_pct / leverage / 100
    return entry * (1 + move_pct) if direction == "LONG" else entry * (1 - move_pct)


def suggested_stop_from_atr(entry: float, mark: float, direction: str,
                            atr14: Optional[float], atr_multiple: float = 1.5) -> Optional[float]:
    """
    Stop atr_multiple ATRs beyond entry.

    When price has already moved past that stop (a LONG marked below it, a
    SHORT above it) the stop is placed the same distance from mark instead.
    """
    if entry <= 0 or mark <= 0 or not atr14 or atr14 <= 0:
        return None
    distance = atr14 * atr_multiple
    if direction == "LONG":
        stop = entry - distance
        return mark - distance if stop >= mark else stop
    stop = entry + distance
    return mark + distance if stop <= mark else stop


def position_risk_notes(position: Position, risk: RiskConfig,
                        atr14: Optional[float]) -> Tuple[List[str], List[str]]:
    """Warnings and notes about leverage, liquidation room and ATR availability"""
    warnings: List[str] = []
    notes: List[str] = []

    if position.leverage > risk.max_leverage:
        warnings.append(f"Position leverage is {position.leverage:g}x, above your max of {risk.max_leverage:g}x.")

    distance = liquidation_distance_pct(position_direction(position), position.mark_price,
                                        position.liquidation_price)
    if distance is None:
        notes.append("Liquidation price not available for this position.")
    else:
        distance = max(0.0, distance)
        if distance < 2:
            warnings.append(f"Liquidation is very close (~{distance:.2f}%).")
        elif distance < 5:
            warnings.append(f"Liquidation is close (~{distance:.2f}%).")
        else:
            notes.append(f"Liquidation distance: ~{distance:.2f}%.")

    if not atr14:
        notes.append("ATR14 unavailable (kline fetch failed or insufficient candles).")

    notes.append(f"Target ROI per trade: {risk.target_roi_pct:g}% (max leverage {risk.max_leverage:g}x).")
    notes.append(f"Risk per trade (planning): {risk.risk_per_trade_pct:g}% of account.")
    return warnings, notes


def equity_targets(position: Position, wallet_equity: Optional[float], target_return_pct: float,
                   stretch_return_pct: Sequence[float] = ()) -> Optional[EquityTargets]:
    """Exit prices that return target_return_pct (and each stretch percent) of equity"""
    direction = position_direction(position)
    if direction == "FLAT" or not wallet_equity or wallet_equity <= 0 or position.amount == 0:
        return None

    qty = abs(position.amount)
    entry = position.entry_price

    def target(percent: float) -> EquityTarget:
        profit = wallet_equity * percent / 100
        move = profit / qty
        price = entry + move if direction == "LONG" else entry - move
        return EquityTarget(percent=percent, profit_required=profit, required_price=price)

    return EquityTargets(
        direction=direction,
        entry_price=entry,
        position_qty=position.amount,
        wallet_equity=wallet_equity,
        minimum_target=target(target_return_pct),
        stretch_targets=tuple(target(p) for p in stretch_return_pct)
    )


def build_position_plan(position: Position, risk: RiskConfig, wallet_equity: Optional[float] = None,
                        atr14: Optional[float] = None) -> PositionPlan:
    direction = position_direction(position)
    plan = PositionPlan(
        symbol=position.symbol,
        direction=direction,
        entry_price=position.entry_price,
        mark_price=position.mark_price,
        leverage=position.leverage,
        atr14=atr14
    )
    if direction == "FLAT":
        return replace(plan, warnings=("Position is flat.",))

    warnings, notes = position_risk_notes(position, risk, atr14)
    return replace(
        plan,
        suggested_stop_loss=suggested_stop_from_atr(position.entry_price, position.mark_price, direction, atr14),
        suggested_take_profit=take_profit_from_roi(position.entry_price, direction, position.leverage,
                                                   risk.target_roi_pct),
        equity_targets=equity_targets(position, wallet_equity, risk.target_return_equity_pct,
                                      risk.stretch_return_equity_pct),
        warnings=tuple(warnings),
        notes=tuple(notes)
    )
