"""
Sleep sessions: start/stop tracking, resume (refresh) from the remote store,
manual history entries and export to a health store.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from deps import Container, current_user_id, get_container
from exporter import JsonLinesSink, export_sessions
from models import SleepSession
from sleep_utils import format_duration

router = APIRouter(prefix="/api", tags=["sessions"])


class ManualSessionRequest(BaseModel):
    start_time: datetime
    end_time: Optional[datetime] = None


class UpdateSessionRequest(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


def session_out(session: Optional[SleepSession]) -> Optional[dict]:
    if session is None:
        return None
    data = session.to_record()
    duration = session.duration
    data["duration_minutes"] = int(duration.total_seconds() // 60) if duration is not None else None
    data["duration_label"] = format_duration(duration)
    return data


@router.post("/sessions/start")
async def start_tracking(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Start tracking sleep now, or return the session that is already open."""
    session = await container.sessions.start_tracking(user_id)
    return session_out(session)


@router.post("/sessions/stop")
async def stop_tracking(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Stop the open session. Succeeds with `stopped: null` when nothing was open."""
    session = await container.sessions.stop_tracking(user_id)
    return {"stopped": session_out(session)}


@router.post("/sessions/refresh")
async def refresh(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Resume hook: re-read recent sessions and reconcile tracking state."""
    sessions = await container.sessions.refresh_from_remote(user_id)
    return {
        "active": session_out(container.sessions.active_session(user_id)),
        "sessions": [session_out(s) for s in sessions],
    }


@router.get("/sessions/active")
async def active_session(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    return {"active": session_out(container.sessions.active_session(user_id))}


@router.get("/sessions")
async def list_sessions(
    limit: int = Query(default=20, ge=1, le=200),
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """List recent sessions (newest first) for this user."""
    sessions = await container.sessions.refresh_from_remote(user_id)
    return [session_out(s) for s in sessions[:limit]]


@router.post("/sessions", status_code=201)
async def create_session(
    req: ManualSessionRequest,
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Add a past night by hand."""
    session = await container.sessions.create_manual_session(user_id, req.start_time, req.end_time)
    return session_out(session)


@router.patch("/sessions/{session_id}")
async def update_session(
    session_id: str,
    req: UpdateSessionRequest,
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    session = await container.sessions.update_session(user_id, session_id, req.start_time, req.end_time)
    return session_out(session)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    await container.sessions.delete_session(user_id, session_id)
    return Response(status_code=204)


@router.post("/sessions/export")
async def export(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Export completed sessions; per-session failures are reported, not fatal."""
    sessions = await container.sessions.refresh_from_remote(user_id)
    sink = JsonLinesSink(container.settings.export_path)
    report = await export_sessions(sessions, sink)
    return {
        "exported": report.exported,
        "skipped": report.skipped,
        "failed": report.failed,
    }
