from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from riskbot.clock import coerce_timestamp, trading_day
from riskbot.config import AppConfig, RiskSettings, StrategyProfile
from riskbot.errors import (
    AlreadyTradingError,
    CommandResult,
    InvalidConfigError,
    NoOpenPositionError,
    NotTradingError,
    OrderRejectedError,
    config_error_from,
)
from riskbot.execution.orders import OrderAck, OrderAdapter, OrderIntent
from riskbot.execution.sizing import pnl_pct, position_size, stop_and_target, stop_hit, target_hit, trail_stop
from riskbot.storage.models import (
    DailyCounters,
    EventKind,
    Position,
    PositionEvent,
    SessionState,
    Signal,
    TradeRecord,
    TradingSession,
)
from riskbot.strategy.catalog import StrategyCatalog
from riskbot.strategy.risk import RiskEngine

LOGGER = logging.getLogger(__name__)

EventListener = Callable[[PositionEvent], None]

DEFAULT_STOP_REASON = "manual stop"
DEFAULT_CLOSE_REASON = "manual close"

TIMESTAMP_ERRORS = (TypeError, ValueError, OverflowError, OSError)


class PositionManager:
    """Owns one TradingSession and advances it on ticks, signals and commands.

    Every public method takes the same re-entrant lock, so a signal and a
    price-triggered close can never interleave. Commands report failures as
    ``CommandResult`` values instead of raising.
    """

    def __init__(
        self,
        *,
        catalog: StrategyCatalog,
        risk: RiskSettings,
        balance: float,
        strategy: str | StrategyProfile | None = None,
        timezone_name: str = "UTC",
        order_adapter: OrderAdapter | None = None,
    ):
        if not math.isfinite(balance) or balance <= 0:
            raise InvalidConfigError("balance must be > 0")
        self.catalog = catalog
        self.timezone_name = timezone_name
        self.order_adapter = order_adapter
        profile = self._resolve_profile(strategy) if strategy is not None else catalog.default()
        self.session = TradingSession(strategy=profile, risk=risk, balance=float(balance))
        self.risk_engine = RiskEngine(risk)
        self._lock = threading.RLock()
        self._listeners: list[EventListener] = []
        self._snap_leverage_to(profile)

    @classmethod
    def from_config(cls, config: AppConfig, *, order_adapter: OrderAdapter | None = None) -> "PositionManager":
        return cls(
            catalog=StrategyCatalog.from_config(config),
            risk=config.risk,
            balance=config.session.balance,
            timezone_name=config.session.timezone,
            order_adapter=order_adapter,
        )

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self.session.state

    @property
    def is_trading(self) -> bool:
        with self._lock:
            return self.session.is_trading

    @property
    def position(self) -> Position | None:
        """Snapshot of the open position; edits do not reach the session."""
        with self._lock:
            position = self.session.position
            return replace(position) if position is not None else None

    @property
    def counters(self) -> DailyCounters:
        with self._lock:
            return replace(self.session.counters)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # Lifecycle commands

    def start(
        self,
        strategy: str | StrategyProfile | None = None,
        risk_settings: RiskSettings | Mapping[str, Any] | None = None,
        *,
        timestamp: datetime | int | float | str | None = None,
    ) -> CommandResult:
        with self._lock:
            if self.session.is_trading:
                return CommandResult.failure(AlreadyTradingError("Trading already active"))
            try:
                now = coerce_timestamp(timestamp)
            except TIMESTAMP_ERRORS as exc:
                return self._invalid_timestamp(timestamp, exc)
            try:
                profile = self._resolve_profile(strategy) if strategy is not None else self.session.strategy
                risk = self._validated_risk(risk_settings) if risk_settings is not None else self.session.risk
                if _sets_leverage(risk_settings):
                    self._ensure_leverage_allowed(profile, risk.leverage)
                else:
                    risk = self._leverage_snapped(profile, risk)
            except InvalidConfigError as exc:
                return CommandResult.failure(exc)

            self.session.strategy = profile
            self._apply_risk(risk)
            day = trading_day(now, self.timezone_name) if timestamp is not None else None
            self.session.counters.reset(day)
            self.session.is_trading = True
            self.session.halted = False
            LOGGER.info(
                "Automated trading started | strategy=%s leverage=%dx max_trades=%d max_daily_loss=%.2f%%",
                profile.name,
                risk.leverage,
                profile.max_trades_per_day,
                risk.max_daily_loss_pct,
            )
            self._emit(
                EventKind.TRADING_STARTED,
                now,
                {"strategy": profile.name, "leverage": risk.leverage, "counters": self.session.counters.to_dict()},
            )
            return CommandResult.success(
                "Automated trading started",
                metadata={"strategy": profile.name, "leverage": risk.leverage},
            )

    def stop(
        self,
        reason: str | None = None,
        *,
        timestamp: datetime | int | float | str | None = None,
    ) -> CommandResult:
        with self._lock:
            if not self.session.is_trading and not self.session.halted:
                return CommandResult.failure(NotTradingError("Trading already stopped"))
            try:
                now = coerce_timestamp(timestamp)
            except TIMESTAMP_ERRORS as exc:
                return self._invalid_timestamp(timestamp, exc)
            trade: TradeRecord | None = None
            if self.session.position is not None:
                trade = self._close(reason or DEFAULT_STOP_REASON, self._last_price_or_entry(), now)
            self.session.is_trading = False
            # An explicit stop always lands in STOPPED, even if the forced close breached the loss limit.
            self.session.halted = False
            counters = self.session.counters
            LOGGER.info(
                "Automated trading stopped | daily_pnl=%.2f%% trades=%d",
                counters.cumulative_pnl_pct,
                counters.trade_count,
            )
            self._emit(EventKind.TRADING_STOPPED, now, {"counters": counters.to_dict()})
            return CommandResult.success(
                "Automated trading stopped",
                trade=trade,
                metadata={"daily_pnl_pct": counters.cumulative_pnl_pct, "trades_executed": counters.trade_count},
            )

    # Feed entry points

    def on_price_tick(
        self,
        price: float,
        timestamp: datetime | int | float | str | None = None,
    ) -> CommandResult:
        with self._lock:
            try:
                value = float(price)
            except (TypeError, ValueError):
                value = float("nan")
            if not math.isfinite(value) or value <= 0:
                LOGGER.warning("Ignoring invalid price tick: %r", price)
                return CommandResult(ok=False, message="Invalid price tick", reason_codes=["INVALID_PRICE"])
            try:
                now = coerce_timestamp(timestamp)
            except TIMESTAMP_ERRORS as exc:
                return self._invalid_timestamp(timestamp, exc)

            self._roll_day_if_needed(now)
            self.session.last_price = value
            self.session.last_tick_at = now

            position = self.session.position
            if not self.session.is_trading or position is None:
                return CommandResult.success("No open position")

            if stop_hit(position.direction, position.stop_loss, value):
                reason = "stop loss" if position.stop_loss == position.initial_stop_loss else "trailing stop"
                trade = self._close(reason, value, now)
                return CommandResult.success(f"Closed on {reason}", trade=trade)
            if target_hit(position.direction, position.take_profit, value):
                trade = self._close("take profit", value, now)
                return CommandResult.success("Closed on take profit", trade=trade)

            if self.session.risk.use_trailing_stop:
                self._update_trailing_stop(position, value, now)
            return CommandResult.success("Position maintained", position=replace(position))

    def on_signal(
        self,
        signal: Signal | Mapping[str, Any],
        timestamp: datetime | int | float | str | None = None,
    ) -> CommandResult:
        with self._lock:
            if not isinstance(signal, Signal):
                try:
                    signal = Signal(
                        direction=signal["direction"],
                        confidence=signal.get("confidence", 0.0),
                        reason=str(signal.get("reason", "") or ""),
                    )
                except (KeyError, TypeError, ValueError) as exc:
                    LOGGER.warning("Ignoring malformed signal %r: %s", signal, exc)
                    return CommandResult(ok=False, message=f"Invalid signal: {exc}", reason_codes=["INVALID_SIGNAL"])
            try:
                now = coerce_timestamp(timestamp)
            except TIMESTAMP_ERRORS as exc:
                return self._invalid_timestamp(timestamp, exc)

            self._roll_day_if_needed(now)
            direction = signal.direction.to_position_direction()

            position = self.session.position
            if position is not None:
                if direction != position.direction:
                    trade = self._close(f"reversal: {signal.reason}" if signal.reason else "reversal", self._last_price_or_entry(), now)
                    return CommandResult.success("Closed on reversal signal", trade=trade)
                return CommandResult(
                    ok=False,
                    message=f"{position.direction.value} position already open",
                    reason_codes=["POSITION_ALREADY_OPEN"],
                )

            if not self.session.is_trading:
                return CommandResult(ok=False, message="Trading not active", reason_codes=["NOT_TRADING"])

            check = self.risk_engine.can_open_new_trade(
                self.session.counters,
                self.session.strategy,
                has_position=False,
            )
            if not check.allowed:
                if "DAILY_LOSS_LIMIT_HIT" in check.reason_codes:
                    self._halt(now)
                LOGGER.info("Entry rejected | signal=%s reasons=%s", signal.direction.value, ",".join(check.reason_codes))
                return CommandResult(
                    ok=False,
                    message="Entry rejected: " + ", ".join(check.reason_codes),
                    reason_codes=check.reason_codes,
                    metadata=dict(check.metadata),
                )
            if self.session.last_price is None:
                return CommandResult(ok=False, message="No market price received yet", reason_codes=["NO_PRICE"])
            return self._open(signal, now)

    def close_position(
        self,
        reason: str = DEFAULT_CLOSE_REASON,
        *,
        timestamp: datetime | int | float | str | None = None,
    ) -> CommandResult:
        with self._lock:
            if self.session.position is None:
                return CommandResult.failure(NoOpenPositionError("No open position to close"))
            try:
                now = coerce_timestamp(timestamp)
            except TIMESTAMP_ERRORS as exc:
                return self._invalid_timestamp(timestamp, exc)
            trade = self._close(reason, self._last_price_or_entry(), now)
            return CommandResult.success(
                f"Closed {trade.direction.value} position with {trade.pnl_pct:+.2f}%",
                trade=trade,
            )

    # Configuration setters

    def set_strategy(self, strategy: str | StrategyProfile) -> CommandResult:
        with self._lock:
            try:
                profile = self._resolve_profile(strategy)
            except InvalidConfigError as exc:
                return CommandResult.failure(exc)
            self.session.strategy = profile
            self._snap_leverage_to(profile)
            return CommandResult.success(
                f"Trading strategy set to {profile.name}",
                metadata={"strategy": profile.name, "leverage": self.session.risk.leverage},
            )

    def set_leverage(self, leverage: int) -> CommandResult:
        with self._lock:
            try:
                value = self._parse_leverage(leverage)
                self._ensure_leverage_allowed(self.session.strategy, value)
            except InvalidConfigError as exc:
                return CommandResult.failure(exc)
            self._apply_risk(self.session.risk.model_copy(update={"leverage": value}))
            return CommandResult.success(f"Leverage set to {value}x", metadata={"leverage": value})

    def set_risk_settings(self, settings: RiskSettings | Mapping[str, Any] | None = None, **changes: Any) -> CommandResult:
        with self._lock:
            merged: dict[str, Any] = {}
            if isinstance(settings, RiskSettings):
                merged.update(settings.model_dump())
            elif settings is not None:
                merged.update(settings)
            merged.update(changes)
            try:
                risk = self._validated_risk(merged)
                self._ensure_leverage_allowed(self.session.strategy, risk.leverage)
            except InvalidConfigError as exc:
                return CommandResult.failure(exc)
            self._apply_risk(risk)
            return CommandResult.success("Risk settings updated", metadata=risk.model_dump())

    def set_balance(self, balance: float) -> CommandResult:
        with self._lock:
            try:
                value = float(balance)
            except (TypeError, ValueError):
                value = float("nan")
            if not math.isfinite(value) or value <= 0:
                return CommandResult.failure(InvalidConfigError("balance must be > 0"))
            self.session.balance = value
            return CommandResult.success("Balance updated", metadata={"balance": value})

    # Presentation

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            session = self.session
            return {
                "state": session.state.value,
                "is_trading": session.is_trading,
                "halted": session.halted,
                "strategy": session.strategy.model_dump(),
                "risk": session.risk.model_dump(),
                "balance": session.balance,
                "position": session.position.to_dict() if session.position else None,
                "counters": session.counters.to_dict(),
                "last_price": session.last_price,
                "last_tick_at": session.last_tick_at.isoformat() if session.last_tick_at else None,
                "trades_total": len(session.trade_history),
            }

    def get_trade_history(self, limit: int | None = None) -> list[TradeRecord]:
        with self._lock:
            history = list(self.session.trade_history)
        if limit is None or limit <= 0:
            return history
        return history[-limit:]

    # Internals

    def _open(self, signal: Signal, now: datetime) -> CommandResult:
        session = self.session
        profile = session.strategy
        risk = session.risk
        direction = signal.direction.to_position_direction()
        price = float(session.last_price or 0.0)
        size = position_size(balance=session.balance, max_position_size_pct=risk.max_position_size_pct, entry_price=price)
        if size <= 0:
            return CommandResult(ok=False, message="Computed position size is zero", reason_codes=["INVALID_SIZE"])

        intent = OrderIntent(
            action="open",
            direction=direction,
            size=size,
            leverage=risk.leverage,
            price=price,
            reason=signal.reason,
        )
        ack = self._submit(intent)
        if not ack.accepted:
            LOGGER.warning("Entry order rejected: %s", ack.message or "-")
            return CommandResult.failure(OrderRejectedError(ack.message or "Order rejected by adapter"))
        entry_price = ack.fill_price if ack.fill_price and ack.fill_price > 0 else price

        stop_loss, take_profit = stop_and_target(
            direction=direction,
            entry_price=entry_price,
            stop_loss_pct=profile.stop_loss_pct,
            target_profit_pct=profile.target_profit_pct,
        )
        position = Position(
            direction=direction,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            size=size,
            leverage=risk.leverage,
            entry_time=now,
            initial_stop_loss=stop_loss,
            strategy=profile.name,
            entry_reason=signal.reason,
        )
        session.position = position
        session.counters.trade_count += 1
        LOGGER.info(
            "Entered %s | price=%.8f sl=%.8f tp=%.8f size=%.8f leverage=%dx confidence=%.1f reason=%s",
            direction.value,
            entry_price,
            stop_loss,
            take_profit,
            size,
            risk.leverage,
            signal.confidence,
            signal.reason or "-",
        )
        self._emit(
            EventKind.POSITION_OPENED,
            now,
            {
                "position": position.to_dict(),
                "intent": intent.to_dict(),
                "confidence": signal.confidence,
                "counters": session.counters.to_dict(),
            },
        )
        return CommandResult.success(
            f"Entered {direction.value} position with {risk.leverage}x leverage",
            position=replace(position),
        )

    def _close(self, reason: str, price: float, now: datetime) -> TradeRecord:
        session = self.session
        position = session.position
        assert position is not None
        intent = OrderIntent(
            action="close",
            direction=position.direction,
            size=position.size,
            leverage=position.leverage,
            price=price,
            reason=reason,
        )
        ack = self._submit(intent)
        exit_price = price
        if ack.accepted and ack.fill_price and ack.fill_price > 0:
            exit_price = ack.fill_price
        elif not ack.accepted:
            LOGGER.warning("Close order not confirmed (%s); closing locally at %.8f", ack.message or "-", price)

        pnl = pnl_pct(
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=exit_price,
            leverage=position.leverage,
        )
        trade = TradeRecord(
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            leverage=position.leverage,
            pnl_pct=pnl,
            reason=reason,
            entry_time=position.entry_time,
            exit_time=now,
            strategy=position.strategy,
            entry_reason=position.entry_reason,
        )
        session.trade_history.append(trade)
        session.counters.cumulative_pnl_pct += pnl
        session.position = None
        LOGGER.info(
            "Closed %s | exit=%.8f pnl=%+.2f%% daily_pnl=%+.2f%% reason=%s",
            trade.direction.value,
            exit_price,
            pnl,
            session.counters.cumulative_pnl_pct,
            reason,
        )
        self._emit(
            EventKind.POSITION_CLOSED,
            now,
            {"trade": trade.to_dict(), "counters": session.counters.to_dict(), "intent": intent.to_dict()},
        )

        cumulative = session.counters.cumulative_pnl_pct
        if self.risk_engine.should_halt(cumulative):
            self._halt(now)
        elif not session.counters.profit_target_hit and self.risk_engine.daily_target_reached(cumulative):
            session.counters.profit_target_hit = True
            LOGGER.info("Daily profit target reached | daily_pnl=%+.2f%%", cumulative)
            self._emit(EventKind.DAILY_TARGET_REACHED, now, {"counters": session.counters.to_dict()})
        return trade

    def _halt(self, now: datetime) -> None:
        session = self.session
        if session.halted and not session.is_trading:
            return
        session.is_trading = False
        session.halted = True
        LOGGER.info(
            "Daily loss limit reached, trading halted | daily_pnl=%+.2f%% limit=%.2f%%",
            session.counters.cumulative_pnl_pct,
            session.risk.max_daily_loss_pct,
        )
        self._emit(EventKind.HALTED, now, {"counters": session.counters.to_dict()})

    def _update_trailing_stop(self, position: Position, price: float, now: datetime) -> None:
        new_stop = trail_stop(
            direction=position.direction,
            current_stop=position.stop_loss,
            price=price,
            trailing_pct=self.session.risk.trailing_stop_pct,
        )
        if new_stop == position.stop_loss:
            return
        previous = position.stop_loss
        position.stop_loss = new_stop
        LOGGER.debug("Trailing stop moved %.8f -> %.8f", previous, new_stop)
        self._emit(EventKind.STOP_MOVED, now, {"previous_stop": previous, "stop_loss": new_stop, "price": price})

    def _roll_day_if_needed(self, now: datetime) -> None:
        counters = self.session.counters
        day = trading_day(now, self.timezone_name)
        if counters.trading_day is None:
            counters.trading_day = day
            return
        if day <= counters.trading_day:
            return
        previous = counters.to_dict()
        counters.reset(day)
        LOGGER.info("New trading day %s, daily counters reset", day.isoformat())
        self._emit(EventKind.DAILY_RESET, now, {"previous": previous, "counters": counters.to_dict()})

    def _submit(self, intent: OrderIntent) -> OrderAck:
        if self.order_adapter is None:
            return OrderAck(accepted=True, fill_price=intent.price)
        try:
            return self.order_adapter.submit(intent)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Order adapter failed for %s intent: %s", intent.action, exc)
            return OrderAck(accepted=False, message=str(exc))

    def _emit(self, kind: EventKind, ts: datetime, payload: dict[str, Any]) -> None:
        event = PositionEvent(kind=kind, ts=ts, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Event listener failed for %s: %s", kind.value, exc, exc_info=True)

    def _last_price_or_entry(self) -> float:
        if self.session.last_price is not None:
            return self.session.last_price
        position = self.session.position
        assert position is not None
        return position.entry_price

    def _resolve_profile(self, strategy: str | StrategyProfile) -> StrategyProfile:
        if isinstance(strategy, StrategyProfile):
            return strategy
        return self.catalog.get(strategy)

    def _validated_risk(self, risk: RiskSettings | Mapping[str, Any]) -> RiskSettings:
        raw = risk.model_dump() if isinstance(risk, RiskSettings) else dict(risk)
        unknown = sorted(set(raw) - set(RiskSettings.model_fields))
        if unknown:
            raise InvalidConfigError(f"unknown risk settings: {', '.join(unknown)}")
        if "leverage" in raw:
            raw["leverage"] = self._parse_leverage(raw["leverage"])
        try:
            return RiskSettings.model_validate({**self.session.risk.model_dump(), **raw})
        except ValidationError as exc:
            raise config_error_from(exc) from exc

    @staticmethod
    def _parse_leverage(leverage: Any) -> int:
        if isinstance(leverage, bool):
            raise InvalidConfigError("leverage must be an integer >= 1")
        try:
            value = float(leverage)
        except (TypeError, ValueError) as exc:
            raise InvalidConfigError("leverage must be an integer >= 1") from exc
        if not math.isfinite(value) or value != int(value) or value < 1:
            raise InvalidConfigError("leverage must be an integer >= 1")
        return int(value)

    @staticmethod
    def _ensure_leverage_allowed(profile: StrategyProfile, leverage: int) -> None:
        if not profile.allows_leverage(leverage):
            options = ", ".join(str(option) for option in profile.leverage_options)
            raise InvalidConfigError(f"Invalid leverage for {profile.name}. Choose from: {options}x")

    def _snap_leverage_to(self, profile: StrategyProfile) -> None:
        risk = self._leverage_snapped(profile, self.session.risk)
        if risk is not self.session.risk:
            self._apply_risk(risk)

    @staticmethod
    def _leverage_snapped(profile: StrategyProfile, risk: RiskSettings) -> RiskSettings:
        if profile.allows_leverage(risk.leverage):
            return risk
        LOGGER.info(
            "Leverage %dx not offered by %s, using default %dx",
            risk.leverage,
            profile.name,
            profile.default_leverage,
        )
        return risk.model_copy(update={"leverage": profile.default_leverage})

    @staticmethod
    def _invalid_timestamp(timestamp: Any, exc: Exception) -> CommandResult:
        LOGGER.warning("Ignoring command with invalid timestamp %r: %s", timestamp, exc)
        return CommandResult(ok=False, message=f"Invalid timestamp: {timestamp!r}", reason_codes=["INVALID_TIMESTAMP"])

    def _apply_risk(self, risk: RiskSettings) -> None:
        self.session.risk = risk
        self.risk_engine.risk = risk


def _sets_leverage(risk_settings: RiskSettings | Mapping[str, Any] | None) -> bool:
    if risk_settings is None:
        return False
    if isinstance(risk_settings, RiskSettings):
        return "leverage" in risk_settings.model_fields_set
    return "leverage" in risk_settings
