from __future__ import annotations

from typing import Iterable

from riskbot.config import AppConfig, StrategyProfile
from riskbot.errors import InvalidConfigError


class StrategyCatalog:
    """Named strategy presets; exactly one is active on a session at a time."""

    def __init__(self, profiles: Iterable[StrategyProfile], default: str | None = None):
        self._profiles: dict[str, StrategyProfile] = {}
        for profile in profiles:
            key = profile.name.strip().lower()
            if key in self._profiles:
                raise InvalidConfigError(f"duplicate strategy profile '{key}'")
            self._profiles[key] = profile
        if not self._profiles:
            raise InvalidConfigError("strategy catalog is empty")
        default_key = (default or next(iter(self._profiles))).strip().lower()
        if default_key not in self._profiles:
            raise InvalidConfigError(f"unknown default strategy '{default_key}'")
        self._default = default_key

    @classmethod
    def from_config(cls, config: AppConfig) -> "StrategyCatalog":
        return cls(config.strategies.values(), default=config.session.default_strategy)

    def get(self, name: str) -> StrategyProfile:
        key = str(name).strip().lower()
        profile = self._profiles.get(key)
        if profile is None:
            choices = ", ".join(self.names())
            raise InvalidConfigError(f"unknown strategy '{name}'. Choose from: {choices}")
        return profile

    def names(self) -> list[str]:
        return list(self._profiles)

    def default(self) -> StrategyProfile:
        return self._profiles[self._default]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._profiles
