from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from riskbot.backtest.replay import ReplayRunner, build_signal_source, load_events_csv
from riskbot.config import AppConfig, load_config
from riskbot.execution.orders import PaperOrderAdapter
from riskbot.execution.position_manager import PositionManager
from riskbot.monitoring.alerts import AlertConfig, AlertDispatcher
from riskbot.monitoring.dashboard import DashboardWriter
from riskbot.storage.db import get_connection, init_db
from riskbot.storage.journal import Journal

LOGGER = logging.getLogger("riskbot")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Risk-managed leveraged position manager (paper mode)")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--replay", required=True, help="CSV of ticks and signals to feed through the manager")
    parser.add_argument("--strategy", default=None, help="Override session.default_strategy")
    parser.add_argument("--leverage", type=int, default=None)
    parser.add_argument("--rules", action="store_true", help="Derive signals from indicator columns")
    parser.add_argument("--db", default=None, help="SQLite journal path (overrides SQLITE_PATH)")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def resolve_db_path(root: Path, override: str | None) -> Path:
    raw_path = (override or os.getenv("SQLITE_PATH") or "riskbot.db").strip()
    path = Path(raw_path)
    if not path.is_absolute():
        path = root / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def build_alert_dispatcher(config: AppConfig) -> AlertDispatcher:
    return AlertDispatcher(
        AlertConfig(
            enabled=config.monitoring.alerts_enabled,
            discord_webhook=os.getenv("ALERT_DISCORD_WEBHOOK"),
            telegram_bot_token=os.getenv("ALERT_TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("ALERT_TELEGRAM_CHAT_ID"),
            cooldown_seconds=int(os.getenv("ALERT_COOLDOWN_SECONDS", "30")),
        )
    )


def build_manager(args: argparse.Namespace, config: AppConfig) -> PositionManager:
    manager = PositionManager.from_config(config, order_adapter=PaperOrderAdapter())
    if args.strategy:
        manager.set_strategy(args.strategy).raise_for_error()
    if args.leverage is not None:
        manager.set_leverage(args.leverage).raise_for_error()
    return manager


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    root = Path(__file__).resolve().parent
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = load_config(config_path)

    db_path = resolve_db_path(root, args.db)
    conn = get_connection(db_path)
    init_db(conn)
    LOGGER.info("SQLite state path: %s", db_path)

    manager = build_manager(args, config)
    journal = Journal(conn, log_events=config.monitoring.log_events)
    dashboard_writer = DashboardWriter(
        os.getenv("DASHBOARD_PATH", config.monitoring.dashboard_path),
        status_provider=manager.get_status,
    )
    alerts = build_alert_dispatcher(config)
    for listener in (journal.handle_event, dashboard_writer.handle_event, alerts.handle_event):
        manager.subscribe(listener)

    status = manager.get_status()
    strategy_name = status["strategy"]["name"]
    LOGGER.info(
        "Starting replay | strategy=%s leverage=%dx balance=%.2f timezone=%s",
        strategy_name,
        status["risk"]["leverage"],
        status["balance"],
        config.session.timezone,
    )
    signal_source = build_signal_source(config, strategy_name) if args.rules else None
    frame = load_events_csv(args.replay)
    report = ReplayRunner(manager, signal_source).run(frame)
    try:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=True, default=str))
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
