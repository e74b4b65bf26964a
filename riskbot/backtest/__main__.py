from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from riskbot.backtest.replay import ReplayDataError, ReplayRunner, build_signal_source, load_events_csv
from riskbot.config import load_config
from riskbot.execution.orders import PaperOrderAdapter
from riskbot.execution.position_manager import PositionManager


def _resolve_path(base: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    cwd_candidate = Path.cwd() / path
    if cwd_candidate.exists():
        return cwd_candidate
    return base / path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay recorded ticks and signals through the position manager")
    parser.add_argument("data", help="CSV with timestamp, price and signal or indicator columns")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--strategy", default=None)
    parser.add_argument("--leverage", type=int, default=None)
    parser.add_argument("--rules", action="store_true", help="Derive signals from indicator columns")
    parser.add_argument("--trades", action="store_true", help="Include the trade log in the output")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    project_root = Path(__file__).resolve().parents[2]
    config_path = _resolve_path(project_root, args.config)
    config = load_config(config_path)

    manager = PositionManager.from_config(config, order_adapter=PaperOrderAdapter())
    if args.strategy:
        result = manager.set_strategy(args.strategy)
        if not result.ok:
            parser.error(result.message)
    if args.leverage is not None:
        result = manager.set_leverage(args.leverage)
        if not result.ok:
            parser.error(result.message)

    strategy_name = manager.get_status()["strategy"]["name"]
    signal_source = None
    if args.rules:
        try:
            signal_source = build_signal_source(config, strategy_name)
        except KeyError as exc:
            parser.error(str(exc))
    try:
        frame = load_events_csv(args.data)
    except (OSError, ReplayDataError) as exc:
        print(f"REPLAY_ERROR: {exc}", file=sys.stderr)
        return 2

    report = ReplayRunner(manager, signal_source).run(frame)
    payload = report.to_dict()
    if not args.trades:
        payload.pop("trades")
    print(json.dumps(payload, indent=2, ensure_ascii=True, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
