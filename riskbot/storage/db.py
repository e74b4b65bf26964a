from __future__ import annotations

import sqlite3
from pathlib import Path


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    path = Path(db_path)
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            strategy TEXT NOT NULL,
            direction TEXT NOT NULL,
            entry_price REAL NOT NULL,
            exit_price REAL NOT NULL,
            size REAL NOT NULL,
            leverage INTEGER NOT NULL,
            pnl_pct REAL NOT NULL,
            reason TEXT NOT NULL,
            entry_reason TEXT NOT NULL DEFAULT '',
            entry_time TEXT NOT NULL,
            exit_time TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS daily_stats (
            trading_day TEXT PRIMARY KEY,
            trades_count INTEGER NOT NULL DEFAULT 0,
            pnl_pct REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'ON',
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ts TEXT NOT NULL,
            kind TEXT NOT NULL,
            payload TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_trades_exit_time ON trades(exit_time);
        CREATE INDEX IF NOT EXISTS idx_events_kind_ts ON events(kind, ts);
        """
    )
    conn.commit()
