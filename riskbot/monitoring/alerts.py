from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from riskbot.storage.models import EventKind, PositionEvent

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertConfig:
    enabled: bool = True
    discord_webhook: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    cooldown_seconds: int = 30


class AlertDispatcher:
    def __init__(self, config: AlertConfig):
        self.config = config
        self._last_sent_ts: dict[str, float] = {}

    def handle_event(self, event: PositionEvent) -> None:
        payload = event.payload
        if event.kind == EventKind.HALTED:
            counters = payload.get("counters", {})
            self.send(
                event=event.kind.value,
                message="Daily loss limit reached, trading halted until restarted",
                level="warning",
                context={"daily_pnl_pct": round(float(counters.get("cumulative_pnl_pct", 0.0)), 2)},
            )
        elif event.kind == EventKind.DAILY_TARGET_REACHED:
            counters = payload.get("counters", {})
            self.send(
                event=event.kind.value,
                message="Daily profit target reached",
                context={"daily_pnl_pct": round(float(counters.get("cumulative_pnl_pct", 0.0)), 2)},
            )
        elif event.kind == EventKind.POSITION_CLOSED:
            trade = payload.get("trade", {})
            self.send(
                event=event.kind.value,
                message=f"{trade.get('direction')} closed: {trade.get('reason')}",
                context={"pnl_pct": round(float(trade.get("pnl_pct", 0.0)), 2)},
                dedupe_key=f"close-{trade.get('exit_time')}",
            )

    def send(
        self,
        *,
        event: str,
        message: str,
        level: str = "info",
        context: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> bool:
        if not self.config.enabled:
            return False
        key = dedupe_key or event
        now = time.monotonic()
        prev = self._last_sent_ts.get(key)
        if prev is not None and (now - prev) < self.config.cooldown_seconds:
            return False
        self._last_sent_ts[key] = now

        text = f"[{level.upper()}] {event}: {message}"
        if context:
            text += " | " + " ".join(f"{k}={v}" for k, v in context.items())

        webhook = (self.config.discord_webhook or "").strip()
        if webhook:
            self._post("Discord", webhook, {"content": text})
        bot_token = (self.config.telegram_bot_token or "").strip()
        chat_id = (self.config.telegram_chat_id or "").strip()
        if bot_token and chat_id:
            self._post(
                "Telegram",
                f"https://api.telegram.org/bot{bot_token}/sendMessage",
                {"chat_id": chat_id, "text": text},
            )
        return True

    @staticmethod
    def _post(channel: str, url: str, body: dict[str, Any]) -> None:
        try:
            response = requests.post(url, json=body, timeout=10)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning("%s alert failed: %s", channel, exc)
