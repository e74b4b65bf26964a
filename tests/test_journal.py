from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from riskbot.config import RiskSettings, StrategyProfile
from riskbot.execution.position_manager import PositionManager
from riskbot.storage.db import get_connection, init_db
from riskbot.storage.journal import Journal
from riskbot.storage.models import Direction, EventKind, Signal, SignalDirection
from riskbot.strategy.catalog import StrategyCatalog

T0 = datetime(2026, 4, 1, 8, 0, tzinfo=timezone.utc)


def _wired_manager(tmp_path: Path, *, log_events: bool = True) -> tuple[PositionManager, Journal]:
    conn = get_connection(tmp_path / "journal.db")
    init_db(conn)
    journal = Journal(conn, log_events=log_events)
    profile = StrategyProfile(name="journal", target_profit_pct=4, stop_loss_pct=2, max_trades_per_day=5, default_leverage=10)
    manager = PositionManager(catalog=StrategyCatalog([profile]), risk=RiskSettings(leverage=10), balance=10000)
    manager.subscribe(journal.handle_event)
    return manager, journal


def test_closed_trades_and_daily_stats_are_persisted(tmp_path: Path) -> None:
    manager, journal = _wired_manager(tmp_path)
    manager.start(timestamp=T0)
    manager.on_price_tick(100.0, T0)
    manager.on_signal(Signal(direction=SignalDirection.SELL, confidence=80, reason="fade"), T0)
    manager.on_price_tick(99.0, T0 + timedelta(minutes=3))
    manager.close_position("take some", timestamp=T0 + timedelta(minutes=4))

    trades = journal.get_trades()
    assert len(trades) == 1
    assert trades[0].direction == Direction.SHORT
    assert trades[0].pnl_pct == pytest.approx(10.0)
    assert trades[0].reason == "take some"
    assert trades[0].entry_reason == "fade"
    assert trades[0].exit_time == T0 + timedelta(minutes=4)

    stats = journal.get_daily_stats("2026-04-01")
    assert stats.trades_count == 1
    assert stats.pnl_pct == pytest.approx(10.0)
    assert stats.status == "ON"

    assert journal.count_events(EventKind.POSITION_OPENED) == 1
    assert journal.count_events(EventKind.POSITION_CLOSED) == 1
    assert journal.count_events() >= 3


def test_halt_marks_day_off(tmp_path: Path) -> None:
    manager, journal = _wired_manager(tmp_path)
    manager.start(timestamp=T0)
    manager.on_price_tick(100.0, T0)
    manager.on_signal(Signal(direction=SignalDirection.BUY, confidence=80), T0)
    manager.on_price_tick(98.0, T0 + timedelta(minutes=1))

    stats = journal.get_daily_stats("2026-04-01")
    assert stats.status == "OFF"
    assert stats.pnl_pct == pytest.approx(-20.0)
    assert journal.count_events(EventKind.HALTED) == 1


def test_event_log_can_be_disabled(tmp_path: Path) -> None:
    manager, journal = _wired_manager(tmp_path, log_events=False)
    manager.start(timestamp=T0)
    manager.on_price_tick(100.0, T0)
    manager.on_signal(Signal(direction=SignalDirection.BUY, confidence=80), T0)
    manager.close_position(timestamp=T0)

    assert journal.count_events() == 0
    assert len(journal.get_trades()) == 1


def test_trade_limit_returns_latest_in_order(tmp_path: Path) -> None:
    manager, journal = _wired_manager(tmp_path)
    manager.start(timestamp=T0)
    manager.on_price_tick(100.0, T0)
    for idx in range(3):
        manager.on_signal(Signal(direction=SignalDirection.BUY, confidence=80), T0)
        manager.close_position(f"exit {idx}", timestamp=T0 + timedelta(minutes=idx))

    assert [trade.reason for trade in journal.get_trades(limit=2)] == ["exit 1", "exit 2"]


def test_unknown_day_returns_empty_row(tmp_path: Path) -> None:
    _, journal = _wired_manager(tmp_path)

    stats = journal.get_daily_stats("2030-01-01")

    assert stats.trades_count == 0
    assert stats.status == "ON"
    assert stats.updated_at is None
