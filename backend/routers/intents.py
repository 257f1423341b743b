"""
Shortcut endpoints (Start / Stop / Toggle sleep tracking) for voice assistants
and automations. Redundant requests get a 409 with a user-facing message.
"""
from fastapi import APIRouter, Depends

from deps import Container, current_user_id, get_container
from intents import IntentResult, TrackingIntents
from routers.sessions import session_out

router = APIRouter(prefix="/api/intents", tags=["intents"])


def _intents(container: Container, user_id: str) -> TrackingIntents:
    return TrackingIntents(container.auth_for(user_id), container.sessions)


def _out(result: IntentResult) -> dict:
    return {"action": result.action, "message": result.message, "session": session_out(result.session)}


@router.post("/start")
async def start(container: Container = Depends(get_container), user_id: str = Depends(current_user_id)):
    return _out(await _intents(container, user_id).start())


@router.post("/stop")
async def stop(container: Container = Depends(get_container), user_id: str = Depends(current_user_id)):
    return _out(await _intents(container, user_id).stop())


@router.post("/toggle")
async def toggle(container: Container = Depends(get_container), user_id: str = Depends(current_user_id)):
    return _out(await _intents(container, user_id).toggle())
