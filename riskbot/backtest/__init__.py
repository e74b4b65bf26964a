from riskbot.backtest.replay import (
    ReplayDataError,
    ReplayReport,
    ReplayRunner,
    build_signal_source,
    load_events_csv,
    normalize_events_frame,
    snapshot_from_row,
)

__all__ = [
    "ReplayDataError",
    "ReplayReport",
    "ReplayRunner",
    "build_signal_source",
    "load_events_csv",
    "normalize_events_frame",
    "snapshot_from_row",
]
