from __future__ import annotations

import pytest

from riskbot.execution.sizing import pnl_pct, position_size, stop_and_target, stop_hit, target_hit, trail_stop
from riskbot.storage.models import Direction


def test_stop_and_target_for_both_directions() -> None:
    long_sl, long_tp = stop_and_target(direction=Direction.LONG, entry_price=200.0, stop_loss_pct=1.0, target_profit_pct=2.0)
    short_sl, short_tp = stop_and_target(direction=Direction.SHORT, entry_price=200.0, stop_loss_pct=1.0, target_profit_pct=2.0)

    assert long_sl == pytest.approx(198.0)
    assert long_tp == pytest.approx(204.0)
    assert short_sl == pytest.approx(202.0)
    assert short_tp == pytest.approx(196.0)


def test_position_size_uses_balance_share() -> None:
    # 20% of 10000 = 2000 notional at 50 -> 40 units
    assert position_size(balance=10000, max_position_size_pct=20, entry_price=50) == pytest.approx(40.0)
    assert position_size(balance=10000, max_position_size_pct=20, entry_price=0) == 0.0


def test_pnl_is_leverage_scaled_and_direction_aware() -> None:
    assert pnl_pct(direction=Direction.LONG, entry_price=100, exit_price=101, leverage=25) == pytest.approx(25.0)
    assert pnl_pct(direction=Direction.SHORT, entry_price=100, exit_price=101, leverage=25) == pytest.approx(-25.0)
    assert pnl_pct(direction=Direction.SHORT, entry_price=100, exit_price=100, leverage=50) == 0.0


def test_trail_stop_only_moves_in_favour() -> None:
    assert trail_stop(direction=Direction.LONG, current_stop=95.0, price=110.0, trailing_pct=1.5) == pytest.approx(108.35)
    assert trail_stop(direction=Direction.LONG, current_stop=108.35, price=100.0, trailing_pct=1.5) == 108.35
    assert trail_stop(direction=Direction.SHORT, current_stop=105.0, price=90.0, trailing_pct=2.0) == pytest.approx(91.8)
    assert trail_stop(direction=Direction.SHORT, current_stop=91.8, price=99.0, trailing_pct=2.0) == 91.8


def test_exit_checks_are_inclusive() -> None:
    assert stop_hit(Direction.LONG, 98.0, 98.0) is True
    assert stop_hit(Direction.SHORT, 102.0, 101.9) is False
    assert target_hit(Direction.LONG, 104.0, 104.0) is True
    assert target_hit(Direction.SHORT, 96.0, 96.0) is True


def test_ticks_at_nominal_levels_trigger_exits() -> None:
    # 3.0 * 1.1 lands one ulp above 3.3.
    stop, target = stop_and_target(
        direction=Direction.LONG,
        entry_price=3.0,
        stop_loss_pct=10.0,
        target_profit_pct=10.0,
    )
    assert target_hit(Direction.LONG, target, 3.3) is True
    assert target_hit(Direction.LONG, target, 3.2999) is False
    assert stop_hit(Direction.LONG, stop, 2.7) is True

    short_stop, short_target = stop_and_target(
        direction=Direction.SHORT,
        entry_price=3.0,
        stop_loss_pct=10.0,
        target_profit_pct=10.0,
    )
    assert stop_hit(Direction.SHORT, short_stop, 3.3) is True
    assert stop_hit(Direction.SHORT, short_stop, 3.2999) is False
    assert target_hit(Direction.SHORT, short_target, 2.7) is True
