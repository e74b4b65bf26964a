from __future__ import annotations

import math

from riskbot.storage.models import Direction

LEVEL_REL_TOL = 1e-12


def stop_and_target(
    *,
    direction: Direction,
    entry_price: float,
    stop_loss_pct: float,
    target_profit_pct: float,
) -> tuple[float, float]:
    if direction == Direction.LONG:
        stop_loss = entry_price * (1 - stop_loss_pct / 100)
        take_profit = entry_price * (1 + target_profit_pct / 100)
    else:
        stop_loss = entry_price * (1 + stop_loss_pct / 100)
        take_profit = entry_price * (1 - target_profit_pct / 100)
    return stop_loss, take_profit


def position_size(*, balance: float, max_position_size_pct: float, entry_price: float) -> float:
    if entry_price <= 0 or balance <= 0:
        return 0.0
    return balance * (max_position_size_pct / 100) / entry_price


def pnl_pct(*, direction: Direction, entry_price: float, exit_price: float, leverage: int) -> float:
    if direction == Direction.LONG:
        return ((exit_price - entry_price) / entry_price) * 100 * leverage
    return ((entry_price - exit_price) / entry_price) * 100 * leverage


def trail_stop(*, direction: Direction, current_stop: float, price: float, trailing_pct: float) -> float:
    # Long stops only ratchet up, short stops only ratchet down.
    if direction == Direction.LONG:
        candidate = price * (1 - trailing_pct / 100)
        return max(current_stop, candidate)
    candidate = price * (1 + trailing_pct / 100)
    return min(current_stop, candidate)


def _at_level(price: float, level: float) -> bool:
    # Levels are float products and can land one ulp past the nominal price.
    return math.isclose(price, level, rel_tol=LEVEL_REL_TOL)


def stop_hit(direction: Direction, stop_loss: float, price: float) -> bool:
    if direction == Direction.LONG:
        return price <= stop_loss or _at_level(price, stop_loss)
    return price >= stop_loss or _at_level(price, stop_loss)


def target_hit(direction: Direction, take_profit: float, price: float) -> bool:
    if direction == Direction.LONG:
        return price >= take_profit or _at_level(price, take_profit)
    return price <= take_profit or _at_level(price, take_profit)
