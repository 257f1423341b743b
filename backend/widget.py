"""Home-screen widget snapshot, built only from the shared state file."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from models import ensure_utc, utc_now
from state_store import SessionStateStore


@dataclass
class WidgetEntry:
    date: datetime
    is_tracking: bool
    start_time: Optional[datetime]
    is_logged_in: bool
    elapsed_seconds: Optional[int]
    action_label: str

    def as_dict(self) -> dict:
        return asdict(self)


def build_entry(state_store: SessionStateStore, now: Optional[datetime] = None) -> WidgetEntry:
    now = ensure_utc(now) if now else utc_now()
    snap = state_store.snapshot()
    start = snap["start_time"]
    elapsed = None
    if snap["is_tracking"] and start is not None:
        elapsed = max(0, int((now - start).total_seconds()))
    return WidgetEntry(
        date=now,
        is_tracking=snap["is_tracking"],
        start_time=start,
        is_logged_in=snap["is_logged_in"],
        elapsed_seconds=elapsed,
        action_label="Wake Up" if snap["is_tracking"] else "Sleep",
    )
