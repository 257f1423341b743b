"""
Sleep stats and chart data for the dashboard.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from deps import Container, current_user_id, get_container
from models import utc_now
from settings_service import zone_for
from sleep_utils import chart_points, format_y_label, normalize_time_string, y_domain
from stats import compute_stats

router = APIRouter(prefix="/api", tags=["stats"])

RANGES = {7, 30, 90}


@router.get("/stats")
async def get_stats(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Totals and averages over the recent sessions for this user."""
    sessions = await container.sessions.refresh_from_remote(user_id)
    settings = await container.user_settings.get(user_id)
    return compute_stats(sessions, settings, tz=zone_for(settings))


@router.get("/stats/chart")
async def get_chart(
    days: int = Query(default=7),
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """
    Bedtime/wake-up bars per day. Hours before 15:00 are shifted by +24 so a
    night reads as one continuous bar.
    """
    if days not in RANGES:
        days = 7
    sessions = await container.sessions.refresh_from_remote(user_id)
    settings = await container.user_settings.get(user_id)
    tz = zone_for(settings)

    today = utc_now().astimezone(tz).date() if tz else utc_now().date()
    first_day = today - timedelta(days=days - 1)
    points = chart_points(sessions, first_day, days, tz=tz)

    targets = {
        "bedtime": normalize_time_string(settings.target_bedtime),
        "wake_time": normalize_time_string(settings.target_wake_time),
    }
    values = [p.start_offset for p in points if p.start_offset is not None]
    values += [p.end_offset for p in points if p.end_offset is not None]
    values += list(targets.values())
    low, high = y_domain(values)

    return {
        "days": days,
        "points": [
            {"day": p.day.isoformat(), "start_offset": p.start_offset, "end_offset": p.end_offset}
            for p in points
        ],
        "targets": targets,
        "y_domain": [low, high],
        "y_labels": {str(int(h)): format_y_label(h) for h in range(int(low), int(high) + 1)},
    }
