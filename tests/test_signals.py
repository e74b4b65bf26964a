from __future__ import annotations

import pytest

from riskbot.config import SignalsConfig
from riskbot.storage.models import Direction, SignalDirection
from riskbot.strategy.signals import (
    ConfidenceScorer,
    IndicatorSnapshot,
    RuleSignalSource,
    StrategyRules,
    register_rules,
    rules_for,
)


def _bullish(**overrides: object) -> IndicatorSnapshot:
    fields = {
        "price": 101.0,
        "vwap": 100.0,
        "momentum": 1.5,
        "money_flow": 0.4,
        "volume": 1200.0,
        "volume_ma": 1000.0,
        "price_action": "bullish",
        "wavetrend_cross": "up",
    }
    fields.update(overrides)
    return IndicatorSnapshot(**fields)


def test_all_bullish_indicators_score_full_confidence() -> None:
    scorer = ConfidenceScorer()
    snap = _bullish()

    assert scorer.score(snap) == 100.0
    assert scorer.confidence_for(snap, SignalDirection.BUY) == 100.0
    assert scorer.confidence_for(snap, SignalDirection.SELL) == 0.0


def test_mixed_indicators_and_toggles() -> None:
    snap = _bullish(momentum=-1.0, wavetrend_cross=None, price_action="neutral")

    # -20 momentum, +15 volume, +25 money flow
    assert ConfidenceScorer().score(snap) == pytest.approx(20.0)
    assert ConfidenceScorer(SignalsConfig(money_flow=False)).score(snap) == pytest.approx(-5.0)


def test_scalp_entry_requires_confidence() -> None:
    source = RuleSignalSource("scalp", min_confidence=75)

    strong = source.evaluate(_bullish(blue_dots=True))
    weak = source.evaluate(_bullish(blue_dots=True, momentum=-1.0, money_flow=-1.0, volume=10.0))

    assert strong is not None
    assert strong.direction == SignalDirection.BUY
    assert strong.confidence == 100.0
    assert weak is None


def test_scalp_short_entry_and_exit() -> None:
    source = RuleSignalSource("scalp")
    bearish = IndicatorSnapshot(price=99.0, red_dots=True, price_action="bearish", momentum=-1, money_flow=-1)

    entry = source.evaluate(bearish)
    exit_signal = source.evaluate(IndicatorSnapshot(price=98.0, blue_dots=True), Direction.SHORT)

    assert entry is not None
    assert entry.direction == SignalDirection.SELL
    assert exit_signal is not None
    assert exit_signal.direction == SignalDirection.BUY
    assert exit_signal.confidence == 100.0
    assert exit_signal.reason.startswith("scalp exit")


def test_day_rules_follow_vwap_and_lux_signals() -> None:
    source = RuleSignalSource("day")

    assert source.evaluate(_bullish(lux_signals=("buy",))) is not None
    assert source.evaluate(_bullish(lux_signals=())) is None
    assert source.evaluate(_bullish(vwap=None, lux_signals=("buy",))) is None

    exit_signal = source.evaluate(_bullish(price=99.0), Direction.LONG)
    assert exit_signal is not None
    assert exit_signal.direction == SignalDirection.SELL
    assert source.evaluate(_bullish(), Direction.LONG) is None


def test_swing_rules_use_trend_alignment() -> None:
    source = RuleSignalSource("swing")

    entry = source.evaluate(_bullish(waves_trend="bullish", lux_trend="up"))
    exit_signal = source.evaluate(IndicatorSnapshot(price=100.0, waves_trend="bullish"), Direction.SHORT)

    assert entry is not None
    assert entry.direction == SignalDirection.BUY
    assert exit_signal is not None
    assert exit_signal.direction == SignalDirection.BUY
    assert source.evaluate(IndicatorSnapshot(price=100.0, waves_trend="bullish", lux_trend="down")) is None


def test_rules_registry() -> None:
    with pytest.raises(KeyError):
        rules_for("breakout")

    register_rules(
        "Breakout",
        StrategyRules(
            entry=lambda snap: (SignalDirection.BUY, "breakout") if snap.price > 100 else None,
            exit=lambda snap, direction: None,
        ),
    )
    source = RuleSignalSource("breakout")

    signal = source.evaluate(_bullish(price=105.0))
    assert signal is not None
    assert signal.reason == "breakout"
