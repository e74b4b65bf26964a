from __future__ import annotations

from dataclasses import dataclass, field

from riskbot.config import RiskSettings, StrategyProfile
from riskbot.storage.models import DailyCounters


@dataclass(slots=True)
class RiskCheck:
    allowed: bool
    reason_codes: list[str]
    metadata: dict[str, float | int | str] = field(default_factory=dict)


class RiskEngine:
    def __init__(self, risk: RiskSettings):
        self.risk = risk

    def max_daily_loss_value(self) -> float:
        return -float(self.risk.max_daily_loss_pct)

    def should_halt(self, cumulative_pnl_pct: float) -> bool:
        return cumulative_pnl_pct <= self.max_daily_loss_value()

    def daily_target_reached(self, cumulative_pnl_pct: float) -> bool:
        target = self.risk.daily_profit_target_pct
        if target is None:
            return False
        return cumulative_pnl_pct >= target

    def can_open_new_trade(
        self,
        counters: DailyCounters,
        profile: StrategyProfile,
        *,
        has_position: bool,
    ) -> RiskCheck:
        reasons: list[str] = []
        if self.should_halt(counters.cumulative_pnl_pct):
            reasons.append("DAILY_LOSS_LIMIT_HIT")
        if counters.trade_count >= profile.max_trades_per_day:
            reasons.append("MAX_TRADES_REACHED")
        if has_position:
            reasons.append("POSITION_ALREADY_OPEN")
        return RiskCheck(
            allowed=len(reasons) == 0,
            reason_codes=reasons,
            metadata={
                "trade_count": counters.trade_count,
                "max_trades_per_day": profile.max_trades_per_day,
                "cumulative_pnl_pct": round(counters.cumulative_pnl_pct, 6),
                "max_daily_loss_pct": self.risk.max_daily_loss_pct,
            },
        )
