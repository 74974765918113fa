import pytest

from futures_advisor.config.models import RiskConfig
from futures_advisor.models import Position, SetupDirection
from futures_advisor.position_sizing import (
    build_position_plan, calculate_position_sizing, equity_targets, liquidation_distance_pct, pct_distance,
    position_direction, position_risk_notes, suggested_stop_from_atr, take_profit_from_roi
)


def test_sizing_within_leverage_cap():
    sizing = calculate_position_sizing(
        wallet_equity=1000, risk_per_trade_pct=1.0, entry=100.0, stop_loss=99.0,
        take_profit=103.0, direction=SetupDirection.LONG, max_leverage=3.0
    )
    assert sizing.notional_usd == pytest.approx(1000.0)
    assert sizing.quantity == pytest.approx(10.0)
    assert sizing.risk_usd == pytest.approx(10.0)
    assert sizing.reward_usd == pytest.approx(30.0)
    assert sizing.risk_pct == pytest.approx(1.0)
    assert sizing.leverage_required == pytest.approx(1.0)


def test_sizing_clamps_leverage_to_cap():
    equity = 1000.0
    sizing = calculate_position_sizing(
        wallet_equity=equity, risk_per_trade_pct=1.0, entry=100.0, stop_loss=99.9,
        take_profit=103.0, direction=SetupDirection.LONG, max_leverage=3.0
    )
    # raw leverage would be 10x
    assert sizing.leverage_required == 3.0
    assert sizing.notional_usd == equity * 3.0
    # realised risk falls below the 1% budget when capped
    assert sizing.risk_pct < 1.0
    assert sizing.risk_usd == pytest.approx(3.0)


def test_sizing_short_uses_absolute_distances():
    sizing = calculate_position_sizing(
        wallet_equity=2000, risk_per_trade_pct=0.5, entry=50.0, stop_loss=51.0,
        take_profit=47.0, direction=SetupDirection.SHORT
    )
    assert sizing.risk_usd == pytest.approx(10.0)
    assert sizing.reward_usd == pytest.approx(30.0)


@pytest.mark.parametrize("equity,entry,stop", [
    (0, 100.0, 99.0),
    (1000, 100.0, 100.0),
    (1000, 100.0, 250.0),
    (1000, -1.0, 99.0),
])
def test_sizing_not_computable(equity, entry, stop):
    assert calculate_position_sizing(equity, 1.0, entry, stop, 105.0, SetupDirection.LONG, 3.0) is None


def make_position(side="BOTH", amount=1.0, mark=100.0, liq=96.0):
    return Position(symbol="BTCUSDC", position_side=side, amount=amount,
                    entry_price=100.0, mark_price=mark, liquidation_price=liq)


def test_position_direction():
    assert position_direction(make_position("LONG", 1.0)) == "LONG"
    assert position_direction(make_position("SHORT", -1.0)) == "SHORT"
    assert position_direction(make_position("BOTH", 2.0)) == "LONG"
    assert position_direction(make_position("BOTH", -2.0)) == "SHORT"
    assert position_direction(make_position("BOTH", 0.0)) == "FLAT"


def test_liquidation_distance_direction_aware():
    assert liquidation_distance_pct("LONG", 100.0, 96.0) == pytest.approx(4.0)
    assert liquidation_distance_pct("SHORT", 100.0, 104.0) == pytest.approx(4.0)
    assert liquidation_distance_pct("LONG", 100.0, None) is None
    assert liquidation_distance_pct("LONG", 100.0, 0.0) is None
    assert liquidation_distance_pct("FLAT", 100.0, 96.0) is None


def test_pct_distance():
    assert pct_distance(100.0, 99.5) == pytest.approx(0.5)
    assert pct_distance(100.0, None) is None
    assert pct_distance(0.0, 1.0) is None


def test_take_profit_uses_position_leverage():
    assert take_profit_from_roi(100.0, "LONG", 10.0, 10.0) == pytest.approx(101.0)
    assert take_profit_from_roi(100.0, "SHORT", 5.0, 10.0) == pytest.approx(98.0)
    assert take_profit_from_roi(100.0, "LONG", 0.0, 10.0) is None


def test_atr_stop_sits_beyond_entry():
    assert suggested_stop_from_atr(100.0, 101.0, "LONG", 2.0) == pytest.approx(97.0)
    assert suggested_stop_from_atr(100.0, 99.0, "SHORT", 2.0) == pytest.approx(103.0)


def test_atr_stop_moves_to_mark_once_price_is_past_it():
    # LONG marked below entry - 3: stop trails 3 under mark
    assert suggested_stop_from_atr(100.0, 96.0, "LONG", 2.0) == pytest.approx(93.0)
    assert suggested_stop_from_atr(100.0, 104.0, "SHORT", 2.0) == pytest.approx(107.0)


@pytest.mark.parametrize("entry,mark,atr", [(0.0, 100.0, 2.0), (100.0, 0.0, 2.0), (100.0, 100.0, None), (100.0, 100.0, 0.0)])
def test_atr_stop_needs_prices_and_atr(entry, mark, atr):
    assert suggested_stop_from_atr(entry, mark, "LONG", atr) is None


def test_risk_notes_flag_leverage_and_close_liquidation():
    position = Position(symbol="BTCUSDC", position_side="BOTH", amount=1.0, entry_price=100.0,
                        mark_price=100.0, liquidation_price=98.5, leverage=20.0)
    warnings, notes = position_risk_notes(position, RiskConfig(), atr14=None)

    assert warnings == [
        "Position leverage is 20x, above your max of 3x.",
        "Liquidation is very close (~1.50%).",
    ]
    assert notes == [
        "ATR14 unavailable (kline fetch failed or insufficient candles).",
        "Target ROI per trade: 10% (max leverage 3x).",
        "Risk per trade (planning): 1% of account.",
    ]


@pytest.mark.parametrize("liq,expected_warning,expected_note", [
    (96.0, "Liquidation is close (~4.00%).", None),
    (90.0, None, "Liquidation distance: ~10.00%."),
    (101.0, "Liquidation is very close (~0.00%).", None),
    (None, None, "Liquidation price not available for this position."),
])
def test_risk_notes_liquidation_bands(liq, expected_warning, expected_note):
    warnings, notes = position_risk_notes(make_position(liq=liq), RiskConfig(), atr14=1.0)

    if expected_warning:
        assert expected_warning in warnings
    if expected_note:
        assert notes[0] == expected_note
    assert not any(n.startswith("ATR14") for n in notes)


def test_equity_targets_long_and_short():
    long_targets = equity_targets(make_position(amount=2.0), 1000.0, 10.0, [20.0, 30.0])
    assert long_targets.direction == "LONG"
    assert long_targets.minimum_target.profit_required == pytest.approx(100.0)
    assert long_targets.minimum_target.required_price == pytest.approx(150.0)
    assert [t.required_price for t in long_targets.stretch_targets] == pytest.approx([200.0, 250.0])

    short_targets = equity_targets(make_position(amount=-4.0), 1000.0, 10.0)
    assert short_targets.position_qty == -4.0
    assert short_targets.minimum_target.required_price == pytest.approx(75.0)
    assert short_targets.stretch_targets == ()


@pytest.mark.parametrize("amount,equity", [(0.0, 1000.0), (1.0, 0.0), (1.0, None)])
def test_equity_targets_not_computable(amount, equity):
    assert equity_targets(make_position(amount=amount), equity, 10.0, [20.0]) is None


def test_position_plan_for_open_position():
    position = Position(symbol="ETHUSDC", position_side="SHORT", amount=-1.0, entry_price=2000.0,
                        mark_price=1990.0, liquidation_price=2400.0, leverage=2.0)
    plan = build_position_plan(position, RiskConfig(), wallet_equity=500.0, atr14=20.0)

    assert plan.direction == "SHORT"
    assert plan.suggested_stop_loss == pytest.approx(2030.0)
    assert plan.suggested_take_profit == pytest.approx(1900.0)
    assert plan.equity_targets.minimum_target.required_price == pytest.approx(1950.0)
    assert plan.warnings == ()
    assert plan.notes[0] == "Liquidation distance: ~20.60%."
    assert plan.to_dict()["notes"][-1] == "Risk per trade (planning): 1% of account."


def test_position_plan_for_flat_position():
    plan = build_position_plan(make_position(amount=0.0), RiskConfig(), wallet_equity=500.0, atr14=2.0)

    assert plan.warnings == ("Position is flat.",)
    assert plan.suggested_stop_loss is None
    assert plan.equity_targets is None
