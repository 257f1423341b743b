"""
Time helpers for sleep charts and stats.

Chart hours run past midnight: anything before 15:00 is shown as hour + 24,
so a 23:00 bedtime is 23.0 and a 07:30 wake-up is 31.5.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Optional

from models import SleepSession, ensure_utc

DAY_SPLIT_HOUR = 15.0
DEFAULT_Y_DOMAIN = (18.0, 34.0)


def format_duration(duration: Optional[timedelta]) -> str:
    if duration is None:
        return "--"
    total_minutes = max(0, int(duration.total_seconds() // 60))
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def _local(dt: datetime, tz: Optional[tzinfo]) -> datetime:
    dt = ensure_utc(dt)
    return dt.astimezone(tz) if tz else dt


def minutes_from_midnight(dt: datetime, tz: Optional[tzinfo] = None) -> int:
    local = _local(dt, tz)
    return local.hour * 60 + local.minute


def time_string_to_minutes(value: str) -> int:
    """'HH:MM' or 'HH:MM:SS' -> minutes from midnight."""
    parts = value.split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time string: {value!r}")
    return int(parts[0]) * 60 + int(parts[1])


def minutes_to_time_string(minutes: int) -> str:
    minutes = int(minutes) % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_late_bedtime(actual: datetime, target: str, grace_minutes: int = 60, tz: Optional[tzinfo] = None) -> bool:
    """True if `actual` is more than `grace_minutes` after `target`, across midnight."""
    diff = minutes_from_midnight(actual, tz) - time_string_to_minutes(target)
    if diff < -720:
        diff += 1440
    if diff > 720:
        diff -= 1440
    return diff > grace_minutes


def normalize_hour(dt: datetime, tz: Optional[tzinfo] = None) -> float:
    local = _local(dt, tz)
    value = local.hour + local.minute / 60.0
    return value + 24.0 if value < DAY_SPLIT_HOUR else value


def normalize_time_string(value: str) -> float:
    try:
        minutes = time_string_to_minutes(value)
    except ValueError:
        return 23.0
    hours = minutes / 60.0
    return hours + 24.0 if hours < DAY_SPLIT_HOUR else hours


def y_domain(values: Iterable[float]) -> tuple[float, float]:
    """Chart bounds padded by an hour on both sides."""
    values = list(values)
    if not values:
        return DEFAULT_Y_DOMAIN
    return float(math.floor(min(values) - 1)), float(math.ceil(max(values) + 1))


def format_y_label(value: float) -> str:
    hour = int(value) % 24
    suffix = "PM" if hour >= 12 else "AM"
    hour12 = hour - 12 if hour > 12 else (12 if hour == 0 else hour)
    return f"{hour12} {suffix}"


@dataclass
class ChartPoint:
    day: date
    start_offset: Optional[float] = None
    end_offset: Optional[float] = None


def chart_points(
    sessions: Iterable[SleepSession], first_day: date, days: int, tz: Optional[tzinfo] = None
) -> list[ChartPoint]:
    """One point per day; a night belongs to the day its wake-up falls on."""
    by_wake_day: dict[date, SleepSession] = {}
    for s in sessions:
        if s.end_time is None:
            continue
        by_wake_day.setdefault(_local(s.end_time, tz).date(), s)

    points = []
    for i in range(days):
        day = first_day + timedelta(days=i)
        match = by_wake_day.get(day)
        if match is None:
            points.append(ChartPoint(day=day))
        else:
            points.append(
                ChartPoint(
                    day=day,
                    start_offset=normalize_hour(match.start_time, tz),
                    end_offset=normalize_hour(match.end_time, tz),
                )
            )
    return points
