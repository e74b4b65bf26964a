from __future__ import annotations

import pytest

from riskbot.reporting.metrics import compute_drawdown_series, compute_metrics


def _trades() -> list[dict]:
    return [
        {"pnl_pct": 10.0, "strategy": "day"},
        {"pnl_pct": -5.0, "strategy": "day"},
        {"pnl_pct": 20.0, "strategy": "scalp"},
        {"pnl_pct": -10.0, "strategy": "scalp"},
        {"pnl_pct": -10.0, "strategy": "day"},
    ]


def test_compute_metrics_summary() -> None:
    metrics = compute_metrics(_trades())

    assert metrics["trades_count"] == 5
    assert metrics["wins"] == 2
    assert metrics["losses"] == 3
    assert metrics["win_rate_pct"] == pytest.approx(40.0)
    assert metrics["total_pnl_pct"] == pytest.approx(5.0)
    assert metrics["profit_factor"] == pytest.approx(1.2)
    assert metrics["median_pnl_pct"] == pytest.approx(-5.0)
    assert metrics["payoff_ratio"] == pytest.approx(15.0 / (25.0 / 3))
    assert metrics["max_consecutive_wins"] == 1
    assert metrics["max_consecutive_losses"] == 2
    assert metrics["max_drawdown_pct"] == pytest.approx(20.0)
    assert metrics["by_strategy"]["day"]["trades"] == 3
    assert metrics["by_strategy"]["scalp"]["pnl_pct"] == pytest.approx(10.0)


def test_compute_metrics_empty() -> None:
    metrics = compute_metrics([])

    assert metrics["trades_count"] == 0
    assert metrics["win_rate_pct"] == 0.0
    assert metrics["max_drawdown_pct"] == 0.0
    assert metrics["by_strategy"] == {}


def test_drawdown_series_tracks_peak() -> None:
    series = compute_drawdown_series(_trades())

    assert [point["cumulative_pnl_pct"] for point in series] == pytest.approx([10.0, 5.0, 25.0, 15.0, 5.0])
    assert [point["drawdown_pct"] for point in series] == pytest.approx([0.0, 5.0, 0.0, 10.0, 20.0])


def test_unreadable_pnl_counts_as_flat() -> None:
    metrics = compute_metrics([{"pnl_pct": "n/a"}, {"pnl_pct": float("nan")}, {"pnl_pct": 3}])

    assert metrics["trades_count"] == 3
    assert metrics["wins"] == 1
    assert metrics["losses"] == 0
    assert metrics["by_strategy"]["UNKNOWN"]["trades"] == 3
