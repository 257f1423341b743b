from __future__ import annotations

from datetime import tzinfo
from typing import Iterable, Optional

from models import SleepSession, UserSettings
from sleep_utils import is_late_bedtime, minutes_to_time_string, normalize_hour


def _average_clock(hours: list[float]) -> Optional[str]:
    if not hours:
        return None
    avg = sum(hours) / len(hours)
    return minutes_to_time_string(round(avg * 60))


def compute_stats(
    sessions: Iterable[SleepSession],
    settings: Optional[UserSettings] = None,
    tz: Optional[tzinfo] = None,
) -> dict:
    """Totals and averages over completed sessions; open sessions only count toward total_sessions."""
    sessions = list(sessions)
    completed = [s for s in sessions if s.end_time is not None]

    minutes = [max(0, int(s.duration.total_seconds() // 60)) for s in completed]
    total_minutes = sum(minutes)
    avg_minutes = total_minutes / len(minutes) if minutes else 0

    late = 0
    if settings is not None:
        late = sum(1 for s in completed if is_late_bedtime(s.start_time, settings.target_bedtime, tz=tz))

    return {
        "total_sessions": len(sessions),
        "completed_sessions": len(completed),
        "total_minutes": total_minutes,
        "avg_minutes": round(avg_minutes),
        "total_hours": round(total_minutes / 60),
        "avg_hours": round(avg_minutes / 60, 1),
        "avg_bedtime": _average_clock([normalize_hour(s.start_time, tz) for s in completed]),
        "avg_wake_time": _average_clock([normalize_hour(s.end_time, tz) for s in completed]),
        "late_bedtimes": late,
    }
