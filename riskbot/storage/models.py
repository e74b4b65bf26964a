from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from riskbot.config import RiskSettings, StrategyProfile


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class SignalDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    def to_position_direction(self) -> Direction:
        return Direction.LONG if self is SignalDirection.BUY else Direction.SHORT


class SessionState(str, Enum):
    STOPPED = "STOPPED"
    TRADING_FLAT = "TRADING_FLAT"
    TRADING_IN_POSITION = "TRADING_IN_POSITION"
    HALTED = "HALTED"


class EventKind(str, Enum):
    TRADING_STARTED = "TRADING_STARTED"
    TRADING_STOPPED = "TRADING_STOPPED"
    POSITION_OPENED = "POSITION_OPENED"
    POSITION_CLOSED = "POSITION_CLOSED"
    STOP_MOVED = "STOP_MOVED"
    HALTED = "HALTED"
    DAILY_RESET = "DAILY_RESET"
    DAILY_TARGET_REACHED = "DAILY_TARGET_REACHED"


@dataclass(slots=True, frozen=True)
class Signal:
    direction: SignalDirection
    confidence: float
    reason: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.direction, SignalDirection):
            object.__setattr__(self, "direction", SignalDirection(str(self.direction).strip().upper()))
        confidence = float(self.confidence)
        if not (0.0 <= confidence <= 100.0):
            raise ValueError(f"signal confidence must be in [0,100], got {self.confidence}")
        object.__setattr__(self, "confidence", confidence)


@dataclass(slots=True)
class Position:
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    size: float
    leverage: int
    entry_time: datetime
    initial_stop_loss: float
    strategy: str
    entry_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["direction"] = self.direction.value
        payload["entry_time"] = self.entry_time.isoformat()
        return payload


@dataclass(slots=True, frozen=True)
class TradeRecord:
    direction: Direction
    entry_price: float
    exit_price: float
    size: float
    leverage: int
    pnl_pct: float
    reason: str
    entry_time: datetime
    exit_time: datetime
    strategy: str
    entry_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["direction"] = self.direction.value
        payload["entry_time"] = self.entry_time.isoformat()
        payload["exit_time"] = self.exit_time.isoformat()
        return payload


@dataclass(slots=True)
class DailyCounters:
    trading_day: date | None = None
    trade_count: int = 0
    cumulative_pnl_pct: float = 0.0
    profit_target_hit: bool = False

    def reset(self, trading_day: date | None) -> None:
        self.trading_day = trading_day
        self.trade_count = 0
        self.cumulative_pnl_pct = 0.0
        self.profit_target_hit = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "trading_day": self.trading_day.isoformat() if self.trading_day else None,
            "trade_count": self.trade_count,
            "cumulative_pnl_pct": self.cumulative_pnl_pct,
            "profit_target_hit": self.profit_target_hit,
        }


@dataclass(slots=True)
class TradingSession:
    strategy: StrategyProfile
    risk: RiskSettings
    balance: float
    is_trading: bool = False
    halted: bool = False
    position: Position | None = None
    counters: DailyCounters = field(default_factory=DailyCounters)
    trade_history: list[TradeRecord] = field(default_factory=list)
    last_price: float | None = None
    last_tick_at: datetime | None = None

    @property
    def state(self) -> SessionState:
        if self.halted and not self.is_trading:
            return SessionState.HALTED
        if not self.is_trading:
            return SessionState.STOPPED
        if self.position is not None:
            return SessionState.TRADING_IN_POSITION
        return SessionState.TRADING_FLAT


@dataclass(slots=True)
class PositionEvent:
    kind: EventKind
    ts: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "ts": self.ts.isoformat(), "payload": dict(self.payload)}
