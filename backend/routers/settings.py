from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from deps import Container, current_user_id, get_container

router = APIRouter(prefix="/api", tags=["settings"])


class SettingsUpdate(BaseModel):
    target_bedtime: Optional[str] = None
    target_wake_time: Optional[str] = None
    timezone: Optional[str] = None


@router.get("/settings")
async def get_settings(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    return await container.user_settings.get(user_id)


@router.put("/settings")
async def update_settings(
    req: SettingsUpdate,
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """Target bedtime / wake time as HH:MM[:SS], plus an IANA timezone."""
    return await container.user_settings.update(
        user_id,
        target_bedtime=req.target_bedtime,
        target_wake_time=req.target_wake_time,
        timezone=req.timezone,
    )
