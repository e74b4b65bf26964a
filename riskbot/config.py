from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class StrategyProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    target_profit_pct: float
    stop_loss_pct: float
    max_trades_per_day: int
    leverage_options: list[int] = Field(default_factory=list)
    default_leverage: int = 1
    indicators: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_profile(self) -> "StrategyProfile":
        if not self.name.strip():
            raise ValueError("strategy name must not be empty")
        if self.target_profit_pct <= 0:
            raise ValueError("target_profit_pct must be > 0")
        if self.stop_loss_pct <= 0:
            raise ValueError("stop_loss_pct must be > 0")
        if self.stop_loss_pct >= 100:
            raise ValueError("stop_loss_pct must be < 100")
        if self.max_trades_per_day < 1:
            raise ValueError("max_trades_per_day must be >= 1")
        if self.default_leverage < 1:
            raise ValueError("default_leverage must be >= 1")
        if any(option < 1 for option in self.leverage_options):
            raise ValueError("leverage_options must all be >= 1")
        if self.leverage_options and self.default_leverage not in self.leverage_options:
            raise ValueError("default_leverage must be one of leverage_options")
        return self

    def allows_leverage(self, leverage: int) -> bool:
        if not self.leverage_options:
            return True
        return leverage in self.leverage_options


def _default_strategies() -> dict[str, StrategyProfile]:
    return {
        "scalp": StrategyProfile(
            name="scalp",
            description="Very short-term trades (minutes to hours)",
            target_profit_pct=0.5,
            stop_loss_pct=0.3,
            max_trades_per_day=20,
            leverage_options=[25, 30, 35, 40, 45, 50],
            default_leverage=25,
            indicators=["Market Cipher A", "Market Cipher B", "Lux Algo Price Action"],
        ),
        "day": StrategyProfile(
            name="day",
            description="Intraday trades (completed within same day)",
            target_profit_pct=2.0,
            stop_loss_pct=1.0,
            max_trades_per_day=5,
            leverage_options=[20, 25, 30, 35, 40],
            default_leverage=25,
            indicators=["Market Cipher B", "Lux Algo Price Action", "Lux Algo Signals"],
        ),
        "swing": StrategyProfile(
            name="swing",
            description="Multi-day to multi-week positions",
            target_profit_pct=5.0,
            stop_loss_pct=3.0,
            max_trades_per_day=2,
            leverage_options=[10, 15, 20, 25, 30],
            default_leverage=15,
            indicators=["Market Cipher D", "Lux Algo Trend", "Lux Algo Signals"],
        ),
    }


class RiskSettings(BaseModel):
    max_daily_loss_pct: float = 10.0
    max_position_size_pct: float = 20.0
    use_trailing_stop: bool = True
    trailing_stop_pct: float = 1.5
    leverage: int = 25
    daily_profit_target_pct: float | None = 20.0

    @model_validator(mode="after")
    def validate_risk(self) -> "RiskSettings":
        if self.max_daily_loss_pct <= 0:
            raise ValueError("max_daily_loss_pct must be > 0")
        if not (0 < self.max_position_size_pct <= 100):
            raise ValueError("max_position_size_pct must be in (0,100]")
        if self.trailing_stop_pct <= 0:
            raise ValueError("trailing_stop_pct must be > 0")
        if self.trailing_stop_pct >= 100:
            raise ValueError("trailing_stop_pct must be < 100")
        if self.leverage < 1:
            raise ValueError("leverage must be >= 1")
        if self.daily_profit_target_pct is not None and self.daily_profit_target_pct <= 0:
            raise ValueError("daily_profit_target_pct must be > 0 when provided")
        return self


class SessionConfig(BaseModel):
    balance: float = 10000.0
    timezone: str = "UTC"
    default_strategy: str = "day"
    min_signal_confidence: float = 75.0

    @model_validator(mode="after")
    def validate_session(self) -> "SessionConfig":
        if self.balance <= 0:
            raise ValueError("balance must be > 0")
        self.default_strategy = self.default_strategy.strip().lower()
        if not self.default_strategy:
            raise ValueError("default_strategy must not be empty")
        if not (0 <= self.min_signal_confidence <= 100):
            raise ValueError("min_signal_confidence must be in [0,100]")
        return self


class SignalsConfig(BaseModel):
    momentum: bool = True
    volume_flow: bool = True
    money_flow: bool = True
    wavetrend: bool = True
    price_action: bool = True


class MonitoringConfig(BaseModel):
    dashboard_path: str = "runtime_dashboard.json"
    alerts_enabled: bool = True
    log_events: bool = True


class AppConfig(BaseModel):
    session: SessionConfig = Field(default_factory=SessionConfig)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    strategies: dict[str, StrategyProfile] = Field(default_factory=_default_strategies)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @model_validator(mode="before")
    @classmethod
    def fill_strategy_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        strategies = data.get("strategies")
        if not isinstance(strategies, dict):
            return data
        filled: dict[str, Any] = {}
        for key, value in strategies.items():
            if isinstance(value, dict):
                value = {"name": str(key), **value}
            filled[key] = value
        return {**data, "strategies": filled}

    @model_validator(mode="after")
    def normalize_strategies(self) -> "AppConfig":
        normalized: dict[str, StrategyProfile] = {}
        for key, profile in self.strategies.items():
            name = str(key).strip().lower()
            if not name:
                continue
            if profile.name != name:
                profile = profile.model_copy(update={"name": name})
            normalized[name] = profile
        if not normalized:
            raise ValueError("at least one strategy profile is required")
        self.strategies = normalized
        if self.session.default_strategy not in self.strategies:
            raise ValueError(f"session.default_strategy '{self.session.default_strategy}' is not a configured strategy")
        return self


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
