from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from riskbot.storage.models import PositionEvent


class DashboardWriter:
    """Keeps a JSON status snapshot on disk for whatever renders the UI."""

    def __init__(self, path: str | Path, status_provider: Callable[[], dict[str, Any]] | None = None):
        self.path = Path(path)
        self.status_provider = status_provider
        self.last_event: dict[str, Any] | None = None

    def handle_event(self, event: PositionEvent) -> None:
        self.last_event = event.to_dict()
        if self.status_provider is None:
            return
        self.write(self.status_provider())

    def write(self, status: dict[str, Any]) -> None:
        snapshot = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "last_event": self.last_event,
            **status,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=True, default=str), encoding="utf-8")
        tmp_path.replace(self.path)
