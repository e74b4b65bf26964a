from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from riskbot.storage.models import Position, TradeRecord


class TradingError(Exception):
    code = "TRADING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyTradingError(TradingError):
    code = "ALREADY_TRADING"


class NotTradingError(TradingError):
    code = "NOT_TRADING"


class NoOpenPositionError(TradingError):
    code = "NO_OPEN_POSITION"


class InvalidConfigError(TradingError):
    code = "INVALID_CONFIG"


class OrderRejectedError(TradingError):
    code = "ORDER_REJECTED"


def config_error_from(exc: Exception) -> InvalidConfigError:
    """Flatten a pydantic ValidationError (or ValueError) into a single message."""
    errors = getattr(exc, "errors", None)
    if callable(errors):
        parts = []
        for item in errors():
            loc = ".".join(str(part) for part in item.get("loc", ()) if part != "__root__")
            msg = str(item.get("msg", "")).removeprefix("Value error, ")
            parts.append(f"{loc}: {msg}" if loc else msg)
        if parts:
            return InvalidConfigError("; ".join(parts))
    return InvalidConfigError(str(exc))


@dataclass(slots=True)
class CommandResult:
    ok: bool
    message: str
    error: TradingError | None = None
    trade: "TradeRecord | None" = None
    position: "Position | None" = None
    reason_codes: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str, **kwargs: Any) -> "CommandResult":
        return cls(ok=True, message=message, **kwargs)

    @classmethod
    def failure(cls, error: TradingError, **kwargs: Any) -> "CommandResult":
        reason_codes = kwargs.pop("reason_codes", None) or [error.code]
        return cls(ok=False, message=error.message, error=error, reason_codes=reason_codes, **kwargs)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    def raise_for_error(self) -> "CommandResult":
        if self.error is not None:
            raise self.error
        return self
