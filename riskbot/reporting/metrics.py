from __future__ import annotations

import math
import statistics
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from riskbot.storage.models import TradeRecord


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        converted = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(converted) or math.isinf(converted):
        return default
    return converted


def _pnl_of(trade: TradeRecord | Mapping[str, Any]) -> float:
    if isinstance(trade, TradeRecord):
        return _as_float(trade.pnl_pct)
    return _as_float(trade.get("pnl_pct"))


def _strategy_of(trade: TradeRecord | Mapping[str, Any]) -> str:
    if isinstance(trade, TradeRecord):
        return trade.strategy
    return str(trade.get("strategy", "") or "UNKNOWN")


def _max_consecutive(pnls: Sequence[float], *, positive: bool) -> int:
    longest = 0
    current = 0
    for pnl in pnls:
        is_match = pnl > 0 if positive else pnl < 0
        if is_match:
            current += 1
            if current > longest:
                longest = current
        else:
            current = 0
    return longest


def compute_drawdown_series(trades: Iterable[TradeRecord | Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Running cumulative pnl (in percent points) and its drawdown from the peak."""
    out: list[dict[str, Any]] = []
    cumulative = 0.0
    peak = 0.0
    for idx, trade in enumerate(trades):
        cumulative += _pnl_of(trade)
        peak = max(peak, cumulative)
        out.append(
            {
                "idx": idx,
                "cumulative_pnl_pct": cumulative,
                "drawdown_pct": max(0.0, peak - cumulative),
            }
        )
    return out


def compute_metrics(trades: Sequence[TradeRecord | Mapping[str, Any]]) -> dict[str, Any]:
    pnl_values = [_pnl_of(trade) for trade in trades]
    trades_count = len(pnl_values)
    win_values = [pnl for pnl in pnl_values if pnl > 0]
    loss_values = [pnl for pnl in pnl_values if pnl < 0]
    gross_profit = sum(win_values)
    gross_loss = sum(loss_values)

    avg_win = (gross_profit / len(win_values)) if win_values else 0.0
    avg_loss = (gross_loss / len(loss_values)) if loss_values else 0.0
    payoff_ratio = (avg_win / abs(avg_loss)) if avg_loss < 0 else 0.0
    profit_factor = (gross_profit / abs(gross_loss)) if gross_loss < 0 else 0.0

    by_strategy: dict[str, list[float]] = defaultdict(list)
    for trade, pnl in zip(trades, pnl_values):
        by_strategy[_strategy_of(trade)].append(pnl)

    drawdown = compute_drawdown_series(trades)
    return {
        "trades_count": trades_count,
        "wins": len(win_values),
        "losses": len(loss_values),
        "win_rate_pct": ((len(win_values) / trades_count) * 100.0) if trades_count else 0.0,
        "total_pnl_pct": sum(pnl_values),
        "gross_profit_pct": gross_profit,
        "gross_loss_pct": gross_loss,
        "avg_pnl_pct": (sum(pnl_values) / trades_count) if trades_count else 0.0,
        "median_pnl_pct": statistics.median(pnl_values) if pnl_values else 0.0,
        "avg_win_pct": avg_win,
        "avg_loss_pct": avg_loss,
        "payoff_ratio": payoff_ratio,
        "profit_factor": profit_factor,
        "largest_win_pct": max(pnl_values, default=0.0),
        "largest_loss_pct": min(pnl_values, default=0.0),
        "max_consecutive_wins": _max_consecutive(pnl_values, positive=True),
        "max_consecutive_losses": _max_consecutive(pnl_values, positive=False),
        "max_drawdown_pct": max((point["drawdown_pct"] for point in drawdown), default=0.0),
        "by_strategy": {
            name: {
                "trades": len(values),
                "win_rate_pct": (sum(1 for v in values if v > 0) / len(values)) * 100.0,
                "pnl_pct": sum(values),
            }
            for name, values in by_strategy.items()
        },
    }
