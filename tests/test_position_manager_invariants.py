from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from riskbot.config import RiskSettings, StrategyProfile
from riskbot.execution.position_manager import PositionManager
from riskbot.storage.models import Direction, EventKind, Signal, SignalDirection
from riskbot.strategy.catalog import StrategyCatalog

T0 = datetime(2026, 2, 2, 9, 30, tzinfo=timezone.utc)


def _manager(*, target: float = 20.0, stop: float = 2.0, max_trades: int = 10, leverage: int = 10) -> PositionManager:
    profile = StrategyProfile(
        name="inv",
        target_profit_pct=target,
        stop_loss_pct=stop,
        max_trades_per_day=max_trades,
        default_leverage=leverage,
    )
    manager = PositionManager(
        catalog=StrategyCatalog([profile]),
        risk=RiskSettings(leverage=leverage, max_daily_loss_pct=50),
        balance=5000,
    )
    manager.start(timestamp=T0)
    return manager


def _signal(direction: SignalDirection) -> Signal:
    return Signal(direction=direction, confidence=80, reason="inv")


def test_second_entry_in_same_direction_is_rejected() -> None:
    manager = _manager()
    manager.on_price_tick(100.0, T0)

    first = manager.on_signal(_signal(SignalDirection.BUY), T0)
    second = manager.on_signal(_signal(SignalDirection.BUY), T0)

    assert first.ok is True
    assert second.ok is False
    assert second.reason_codes == ["POSITION_ALREADY_OPEN"]
    assert manager.counters.trade_count == 1


def test_concurrent_signals_open_a_single_position() -> None:
    manager = _manager()
    manager.on_price_tick(100.0, T0)
    barrier = threading.Barrier(8)
    results = []

    def worker() -> None:
        barrier.wait()
        results.append(manager.on_signal(_signal(SignalDirection.BUY), T0))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for result in results if result.ok) == 1
    assert manager.counters.trade_count == 1
    assert manager.position is not None


def test_long_stop_never_decreases() -> None:
    manager = _manager()
    manager.on_price_tick(100.0, T0)
    manager.on_signal(_signal(SignalDirection.BUY), T0)

    stops = []
    for idx, price in enumerate([101.0, 100.5, 102.0, 101.2, 103.0, 102.9]):
        manager.on_price_tick(price, T0 + timedelta(seconds=idx + 1))
        position = manager.position
        assert position is not None
        stops.append(position.stop_loss)

    assert stops == sorted(stops)
    assert stops[-1] == pytest.approx(103.0 * 0.985)


def test_short_stop_never_increases_and_closes_on_trail() -> None:
    manager = _manager()
    manager.on_price_tick(100.0, T0)
    manager.on_signal(_signal(SignalDirection.SELL), T0)
    position = manager.position
    assert position is not None
    assert position.direction == Direction.SHORT
    assert position.stop_loss == pytest.approx(102.0)
    assert position.take_profit == pytest.approx(80.0)

    manager.on_price_tick(95.0, T0 + timedelta(seconds=1))
    assert manager.position is not None
    trailed = manager.position.stop_loss
    assert trailed == pytest.approx(96.425)

    manager.on_price_tick(96.0, T0 + timedelta(seconds=2))
    assert manager.position is not None
    assert manager.position.stop_loss == trailed

    result = manager.on_price_tick(96.5, T0 + timedelta(seconds=3))
    assert result.trade is not None
    assert result.trade.reason == "trailing stop"
    assert result.trade.pnl_pct == pytest.approx(35.0)


def test_trade_count_never_exceeds_daily_maximum() -> None:
    manager = _manager(max_trades=3)
    manager.on_price_tick(100.0, T0)

    for idx in range(10):
        ts = T0 + timedelta(minutes=idx)
        manager.on_signal(_signal(SignalDirection.BUY), ts)
        if manager.position is not None:
            manager.close_position(timestamp=ts)
        assert manager.counters.trade_count <= 3

    assert len(manager.get_trade_history()) == 3


def test_repeated_identical_ticks_do_not_change_state() -> None:
    manager = _manager()
    moves = []
    manager.subscribe(lambda event: moves.append(event) if event.kind == EventKind.STOP_MOVED else None)
    manager.on_price_tick(100.0, T0)
    manager.on_signal(_signal(SignalDirection.BUY), T0)

    manager.on_price_tick(101.0, T0 + timedelta(seconds=1))
    assert manager.position is not None
    stop_after_first = manager.position.stop_loss
    manager.on_price_tick(101.0, T0 + timedelta(seconds=2))

    assert manager.position is not None
    assert manager.position.stop_loss == stop_after_first
    assert len(moves) == 1
    assert manager.get_trade_history() == []


def test_repeated_exit_tick_records_one_trade() -> None:
    manager = _manager(target=4.0)
    manager.on_price_tick(100.0, T0)
    manager.on_signal(_signal(SignalDirection.BUY), T0)

    manager.on_price_tick(104.0, T0 + timedelta(seconds=1))
    manager.on_price_tick(104.0, T0 + timedelta(seconds=2))

    assert len(manager.get_trade_history()) == 1
    assert manager.counters.trade_count == 1


@pytest.mark.parametrize("direction", [SignalDirection.BUY, SignalDirection.SELL])
def test_open_then_close_at_same_price_is_flat(direction: SignalDirection) -> None:
    manager = _manager(leverage=25)
    manager.on_price_tick(250.0, T0)
    manager.on_signal(_signal(direction), T0)

    result = manager.close_position(timestamp=T0)

    assert result.trade is not None
    assert result.trade.pnl_pct == 0.0
    assert manager.counters.cumulative_pnl_pct == 0.0
