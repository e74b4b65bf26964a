from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from riskbot.config import SignalsConfig
from riskbot.storage.models import Direction, Signal, SignalDirection

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndicatorSnapshot:
    price: float
    vwap: float | None = None
    momentum: float = 0.0
    money_flow: float = 0.0
    volume: float = 0.0
    volume_ma: float = 0.0
    waves_trend: str = "neutral"
    lux_trend: str = "neutral"
    price_action: str = "neutral"
    blue_dots: bool = False
    red_dots: bool = False
    yellow_dots: bool = False
    lux_signals: tuple[str, ...] = field(default_factory=tuple)
    wavetrend_cross: str | None = None

    def has_lux_signal(self, name: str) -> bool:
        return name in self.lux_signals


EntryRule = Callable[[IndicatorSnapshot], "tuple[SignalDirection, str] | None"]
ExitRule = Callable[[IndicatorSnapshot, Direction], "str | None"]


@dataclass(slots=True, frozen=True)
class StrategyRules:
    entry: EntryRule
    exit: ExitRule


def _scalp_entry(snap: IndicatorSnapshot) -> tuple[SignalDirection, str] | None:
    if snap.blue_dots and snap.price_action == "bullish":
        return SignalDirection.BUY, "scalp long: blue dots with bullish price action"
    if snap.red_dots and snap.price_action == "bearish":
        return SignalDirection.SELL, "scalp short: red dots with bearish price action"
    return None


def _scalp_exit(snap: IndicatorSnapshot, direction: Direction) -> str | None:
    if direction == Direction.LONG and snap.yellow_dots:
        return "scalp exit: yellow dots while long"
    if direction == Direction.SHORT and snap.blue_dots:
        return "scalp exit: blue dots while short"
    return None


def _day_entry(snap: IndicatorSnapshot) -> tuple[SignalDirection, str] | None:
    if snap.vwap is None:
        return None
    if snap.price > snap.vwap and snap.momentum > 0 and snap.has_lux_signal("buy"):
        return SignalDirection.BUY, "day long: above VWAP with bullish momentum and buy signal"
    if snap.price < snap.vwap and snap.momentum < 0 and snap.has_lux_signal("sell"):
        return SignalDirection.SELL, "day short: below VWAP with bearish momentum and sell signal"
    return None


def _day_exit(snap: IndicatorSnapshot, direction: Direction) -> str | None:
    below_vwap = snap.vwap is not None and snap.price < snap.vwap
    above_vwap = snap.vwap is not None and snap.price > snap.vwap
    if direction == Direction.LONG and (below_vwap or snap.has_lux_signal("sell")):
        return "day exit: below VWAP or sell signal while long"
    if direction == Direction.SHORT and (above_vwap or snap.has_lux_signal("buy")):
        return "day exit: above VWAP or buy signal while short"
    return None


def _swing_entry(snap: IndicatorSnapshot) -> tuple[SignalDirection, str] | None:
    if snap.waves_trend == "bullish" and snap.lux_trend == "up":
        return SignalDirection.BUY, "swing long: bullish waves with uptrend"
    if snap.waves_trend == "bearish" and snap.lux_trend == "down":
        return SignalDirection.SELL, "swing short: bearish waves with downtrend"
    return None


def _swing_exit(snap: IndicatorSnapshot, direction: Direction) -> str | None:
    if direction == Direction.LONG and (snap.waves_trend == "bearish" or snap.lux_trend == "down"):
        return "swing exit: bearish waves or downtrend while long"
    if direction == Direction.SHORT and (snap.waves_trend == "bullish" or snap.lux_trend == "up"):
        return "swing exit: bullish waves or uptrend while short"
    return None


_RULES: dict[str, StrategyRules] = {
    "scalp": StrategyRules(entry=_scalp_entry, exit=_scalp_exit),
    "day": StrategyRules(entry=_day_entry, exit=_day_exit),
    "swing": StrategyRules(entry=_swing_entry, exit=_swing_exit),
}


def register_rules(name: str, rules: StrategyRules) -> None:
    _RULES[name.strip().lower()] = rules


def rules_for(name: str) -> StrategyRules:
    key = name.strip().lower()
    if key not in _RULES:
        raise KeyError(f"no signal rules registered for strategy '{name}'")
    return _RULES[key]


class ConfidenceScorer:
    """Signed indicator vote in [-100, 100]; positive favours BUY."""

    WEIGHTS = {
        "momentum": 20.0,
        "volume_flow": 15.0,
        "money_flow": 25.0,
        "wavetrend": 20.0,
        "price_action": 20.0,
    }

    def __init__(self, toggles: SignalsConfig | None = None):
        self.toggles = toggles or SignalsConfig()

    def score(self, snap: IndicatorSnapshot) -> float:
        total = 0.0
        if self.toggles.momentum:
            total += self.WEIGHTS["momentum"] if snap.momentum > 0 else -self.WEIGHTS["momentum"]
        if self.toggles.volume_flow:
            total += self.WEIGHTS["volume_flow"] if snap.volume > snap.volume_ma else -self.WEIGHTS["volume_flow"]
        if self.toggles.money_flow:
            total += self.WEIGHTS["money_flow"] if snap.money_flow > 0 else -self.WEIGHTS["money_flow"]
        if self.toggles.wavetrend:
            if snap.wavetrend_cross == "up":
                total += self.WEIGHTS["wavetrend"]
            elif snap.wavetrend_cross == "down":
                total -= self.WEIGHTS["wavetrend"]
        if self.toggles.price_action:
            if snap.price_action == "bullish":
                total += self.WEIGHTS["price_action"]
            elif snap.price_action == "bearish":
                total -= self.WEIGHTS["price_action"]
        return max(-100.0, min(100.0, total))

    def confidence_for(self, snap: IndicatorSnapshot, direction: SignalDirection) -> float:
        signed = self.score(snap)
        aligned = signed if direction == SignalDirection.BUY else -signed
        return max(0.0, aligned)


class RuleSignalSource:
    """Turns indicator snapshots into signals using a strategy's rule pair."""

    def __init__(
        self,
        strategy: str,
        *,
        scorer: ConfidenceScorer | None = None,
        min_confidence: float = 0.0,
    ):
        self.strategy = strategy.strip().lower()
        self.rules = rules_for(self.strategy)
        self.scorer = scorer or ConfidenceScorer()
        self.min_confidence = float(min_confidence)

    def evaluate(self, snap: IndicatorSnapshot, position_direction: Direction | None = None) -> Signal | None:
        if position_direction is not None:
            reason = self.rules.exit(snap, position_direction)
            if reason is None:
                return None
            exit_direction = SignalDirection.SELL if position_direction == Direction.LONG else SignalDirection.BUY
            return Signal(direction=exit_direction, confidence=100.0, reason=reason)

        entry = self.rules.entry(snap)
        if entry is None:
            return None
        direction, reason = entry
        confidence = self.scorer.confidence_for(snap, direction)
        if confidence < self.min_confidence:
            LOGGER.debug(
                "Discarding %s entry for %s: confidence %.1f < %.1f",
                direction.value,
                self.strategy,
                confidence,
                self.min_confidence,
            )
            return None
        return Signal(direction=direction, confidence=confidence, reason=reason)
