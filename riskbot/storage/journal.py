from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from riskbot.storage.models import Direction, EventKind, PositionEvent, TradeRecord


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


@dataclass(slots=True)
class DailyStatsRow:
    trading_day: str
    trades_count: int = 0
    pnl_pct: float = 0.0
    status: str = "ON"
    updated_at: datetime | None = None


_STATUS_BY_KIND = {
    EventKind.HALTED: "OFF",
    EventKind.TRADING_STARTED: "ON",
    EventKind.DAILY_RESET: "ON",
}


class Journal:
    def __init__(self, conn: sqlite3.Connection, *, log_events: bool = True):
        self.conn = conn
        self.log_events = log_events
        self.lock = threading.Lock()

    def handle_event(self, event: PositionEvent) -> None:
        if self.log_events:
            self.log_event(event)
        if event.kind == EventKind.POSITION_CLOSED:
            self.record_trade(_trade_from_payload(event.payload["trade"]))
        counters = event.payload.get("counters")
        if counters and counters.get("trading_day"):
            status = _STATUS_BY_KIND.get(event.kind)
            self.upsert_daily_stats(
                trading_day=str(counters["trading_day"]),
                trades_count=int(counters.get("trade_count", 0)),
                pnl_pct=float(counters.get("cumulative_pnl_pct", 0.0)),
                status=status,
                updated_at=event.ts,
            )

    def log_event(self, event: PositionEvent) -> None:
        with self.lock:
            self.conn.execute(
                "INSERT INTO events (ts, kind, payload) VALUES (?, ?, ?)",
                (_to_iso(event.ts), event.kind.value, json.dumps(event.payload, default=str)),
            )
            self.conn.commit()

    def record_trade(self, trade: TradeRecord) -> None:
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO trades (
                    strategy, direction, entry_price, exit_price, size, leverage, pnl_pct,
                    reason, entry_reason, entry_time, exit_time
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trade.strategy,
                    trade.direction.value,
                    trade.entry_price,
                    trade.exit_price,
                    trade.size,
                    trade.leverage,
                    trade.pnl_pct,
                    trade.reason,
                    trade.entry_reason,
                    _to_iso(trade.entry_time),
                    _to_iso(trade.exit_time),
                ),
            )
            self.conn.commit()

    def upsert_daily_stats(
        self,
        *,
        trading_day: str,
        trades_count: int,
        pnl_pct: float,
        updated_at: datetime,
        status: str | None = None,
    ) -> None:
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO daily_stats (trading_day, trades_count, pnl_pct, status, updated_at)
                VALUES (?, ?, ?, COALESCE(?, 'ON'), ?)
                ON CONFLICT(trading_day) DO UPDATE SET
                    trades_count=excluded.trades_count,
                    pnl_pct=excluded.pnl_pct,
                    status=COALESCE(?, daily_stats.status),
                    updated_at=excluded.updated_at
                """,
                (trading_day, trades_count, pnl_pct, status, _to_iso(updated_at), status),
            )
            self.conn.commit()

    def get_trades(self, limit: int | None = None) -> list[TradeRecord]:
        with self.lock:
            if limit is None:
                rows = self.conn.execute("SELECT * FROM trades ORDER BY id ASC").fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM (SELECT * FROM trades ORDER BY id DESC LIMIT ?) ORDER BY id ASC",
                    (int(limit),),
                ).fetchall()
        return [
            TradeRecord(
                direction=Direction(row["direction"]),
                entry_price=float(row["entry_price"]),
                exit_price=float(row["exit_price"]),
                size=float(row["size"]),
                leverage=int(row["leverage"]),
                pnl_pct=float(row["pnl_pct"]),
                reason=str(row["reason"]),
                entry_time=_from_iso(row["entry_time"]),
                exit_time=_from_iso(row["exit_time"]),
                strategy=str(row["strategy"]),
                entry_reason=str(row["entry_reason"]),
            )
            for row in rows
        ]

    def get_daily_stats(self, trading_day: str) -> DailyStatsRow:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM daily_stats WHERE trading_day = ?",
                (trading_day,),
            ).fetchone()
        if row is None:
            return DailyStatsRow(trading_day=trading_day)
        return DailyStatsRow(
            trading_day=str(row["trading_day"]),
            trades_count=int(row["trades_count"]),
            pnl_pct=float(row["pnl_pct"]),
            status=str(row["status"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    def count_events(self, kind: EventKind | None = None) -> int:
        with self.lock:
            if kind is None:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM events").fetchone()
            else:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM events WHERE kind = ?", (kind.value,)).fetchone()
        return int(row["n"])


def _trade_from_payload(payload: dict) -> TradeRecord:
    return TradeRecord(
        direction=Direction(payload["direction"]),
        entry_price=float(payload["entry_price"]),
        exit_price=float(payload["exit_price"]),
        size=float(payload["size"]),
        leverage=int(payload["leverage"]),
        pnl_pct=float(payload["pnl_pct"]),
        reason=str(payload["reason"]),
        entry_time=_from_iso(payload["entry_time"]),
        exit_time=_from_iso(payload["exit_time"]),
        strategy=str(payload["strategy"]),
        entry_reason=str(payload.get("entry_reason", "")),
    )
