from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

from riskbot.config import AppConfig
from riskbot.execution.position_manager import PositionManager
from riskbot.reporting.metrics import compute_metrics
from riskbot.storage.models import Signal, TradeRecord
from riskbot.strategy.signals import ConfidenceScorer, IndicatorSnapshot, RuleSignalSource

LOGGER = logging.getLogger(__name__)

_TIMESTAMP_CANDIDATES = ("timestamp", "ts", "ts_utc", "time", "datetime", "date")
_PRICE_CANDIDATES = ("price", "close", "last")
_TEXT_INDICATORS = ("waves_trend", "lux_trend", "price_action", "wavetrend_cross")


class ReplayDataError(ValueError):
    pass


def load_events_csv(csv_path: str | Path) -> pd.DataFrame:
    """Read a tick/signal CSV into a frame sorted by ``timestamp``.

    Only ``timestamp`` and ``price`` are required (common aliases such as
    ``ts_utc`` or ``close`` are accepted). Optional ``signal``, ``confidence``
    and ``reason`` columns carry explicit signals; indicator columns feed a
    rule-based signal source instead.
    """
    raw = pd.read_csv(csv_path)
    return normalize_events_frame(raw)


def normalize_events_frame(raw: pd.DataFrame) -> pd.DataFrame:
    columns = {str(name).strip().lower(): name for name in raw.columns}

    def pick(candidates: tuple[str, ...]) -> str:
        for candidate in candidates:
            matched = columns.get(candidate)
            if matched is not None:
                return matched
        raise ReplayDataError(f"missing required column, expected one of: {', '.join(candidates)}")

    ts_col = pick(_TIMESTAMP_CANDIDATES)
    price_col = pick(_PRICE_CANDIDATES)
    out = pd.DataFrame(
        {
            "timestamp": pd.to_datetime(raw[ts_col], utc=True, errors="coerce"),
            "price": pd.to_numeric(raw[price_col], errors="coerce"),
        }
    )
    for name, original in columns.items():
        if original in (ts_col, price_col) or name in out.columns:
            continue
        out[name] = raw[original]

    before = len(out)
    out = out.dropna(subset=["timestamp", "price"])
    dropped = before - len(out)
    if dropped:
        LOGGER.warning("Dropped %d replay rows with unreadable timestamp or price", dropped)
    return out.sort_values("timestamp", kind="stable").reset_index(drop=True)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        return False
    return isinstance(value, str) and not value.strip()


def _as_bool(value: Any) -> bool:
    if _is_blank(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


def _as_float(value: Any, default: float = 0.0) -> float:
    if _is_blank(value):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def snapshot_from_row(row: dict[str, Any]) -> IndicatorSnapshot:
    lux_raw = row.get("lux_signals")
    lux_signals: tuple[str, ...] = ()
    if not _is_blank(lux_raw):
        parts = str(lux_raw).replace("|", ",").split(",")
        lux_signals = tuple(part.strip().lower() for part in parts if part.strip())

    text: dict[str, Any] = {}
    for name in _TEXT_INDICATORS:
        value = row.get(name)
        if not _is_blank(value):
            text[name] = str(value).strip().lower()

    vwap = row.get("vwap")
    return IndicatorSnapshot(
        price=float(row["price"]),
        vwap=None if _is_blank(vwap) else _as_float(vwap),
        momentum=_as_float(row.get("momentum")),
        money_flow=_as_float(row.get("money_flow")),
        volume=_as_float(row.get("volume")),
        volume_ma=_as_float(row.get("volume_ma")),
        blue_dots=_as_bool(row.get("blue_dots")),
        red_dots=_as_bool(row.get("red_dots")),
        yellow_dots=_as_bool(row.get("yellow_dots")),
        lux_signals=lux_signals,
        **text,
    )


def build_signal_source(config: AppConfig, strategy: str) -> RuleSignalSource:
    return RuleSignalSource(
        strategy,
        scorer=ConfidenceScorer(config.signals),
        min_confidence=config.session.min_signal_confidence,
    )


@dataclass(slots=True)
class ReplayReport:
    rows: int
    ticks_rejected: int
    signals_seen: int
    signals_accepted: int
    trades: list[TradeRecord] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "ticks_rejected": self.ticks_rejected,
            "signals_seen": self.signals_seen,
            "signals_accepted": self.signals_accepted,
            "metrics": self.metrics,
            "status": self.status,
            "trades": [trade.to_dict() for trade in self.trades],
        }


class ReplayRunner:
    """Feeds a recorded frame through a PositionManager, tick first, then signal."""

    def __init__(
        self,
        manager: PositionManager,
        signal_source: RuleSignalSource | None = None,
        *,
        auto_start: bool = True,
    ):
        self.manager = manager
        self.signal_source = signal_source
        self.auto_start = auto_start

    def run(self, frame: pd.DataFrame) -> ReplayReport:
        frame = normalize_events_frame(frame)
        has_signal_column = "signal" in frame.columns
        trades_before = len(self.manager.get_trade_history())

        ticks_rejected = 0
        signals_seen = 0
        signals_accepted = 0
        started = False
        for row in frame.to_dict(orient="records"):
            ts = row["timestamp"]
            now: datetime = ts.to_pydatetime() if isinstance(ts, pd.Timestamp) else ts
            if self.auto_start and not started:
                started = True
                if not self.manager.is_trading:
                    self.manager.start(timestamp=now)

            tick = self.manager.on_price_tick(float(row["price"]), now)
            if not tick.ok:
                ticks_rejected += 1
                continue

            signal = self._signal_for(row, has_signal_column)
            if signal is None:
                continue
            signals_seen += 1
            result = self.manager.on_signal(signal, now)
            if result.ok:
                signals_accepted += 1
            else:
                LOGGER.debug("Replay signal at %s not applied: %s", now.isoformat(), result.message)

        trades = self.manager.get_trade_history()[trades_before:]
        return ReplayReport(
            rows=len(frame),
            ticks_rejected=ticks_rejected,
            signals_seen=signals_seen,
            signals_accepted=signals_accepted,
            trades=trades,
            metrics=compute_metrics(trades),
            status=self.manager.get_status(),
        )

    def _signal_for(self, row: dict[str, Any], has_signal_column: bool) -> Signal | dict[str, Any] | None:
        if has_signal_column and not _is_blank(row.get("signal")):
            return {
                "direction": str(row["signal"]).strip().upper(),
                "confidence": _as_float(row.get("confidence"), default=100.0),
                "reason": "" if _is_blank(row.get("reason")) else str(row["reason"]),
            }
        if self.signal_source is None:
            return None
        position = self.manager.position
        return self.signal_source.evaluate(
            snapshot_from_row(row),
            position.direction if position is not None else None,
        )
