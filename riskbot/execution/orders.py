from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from riskbot.storage.models import Direction

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class OrderIntent:
    action: str
    direction: Direction
    size: float
    leverage: int
    price: float
    reason: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "direction": self.direction.value,
            "size": self.size,
            "leverage": self.leverage,
            "price": self.price,
            "reason": self.reason,
        }


@dataclass(slots=True, frozen=True)
class OrderAck:
    accepted: bool
    fill_price: float | None = None
    message: str = ""


class OrderAdapter(Protocol):
    def submit(self, intent: OrderIntent) -> OrderAck:
        ...


class PaperOrderAdapter:
    """Accepts every intent and fills it at the intent price."""

    def __init__(self) -> None:
        self.submitted: list[OrderIntent] = []

    def submit(self, intent: OrderIntent) -> OrderAck:
        self.submitted.append(intent)
        LOGGER.info(
            "PAPER %s %s size=%.8f leverage=%dx price=%.8f reason=%s",
            intent.action.upper(),
            intent.direction.value,
            intent.size,
            intent.leverage,
            intent.price,
            intent.reason or "-",
        )
        return OrderAck(accepted=True, fill_price=intent.price, message="paper fill")
