from __future__ import annotations

import re
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from errors import PersistenceError, ValidationError
from models import UserSettings

TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def normalize_time(value: str, label: str) -> str:
    """Accept 'HH:MM' or 'HH:MM:SS'; store 'HH:MM:SS'."""
    match = TIME_RE.match((value or "").strip())
    if not match:
        raise ValidationError(f"{label} must look like HH:MM or HH:MM:SS")
    hh, mm, ss = match.group(1), match.group(2), match.group(3) or "00"
    return f"{hh}:{mm}:{ss}"


def zone_for(settings: Optional[UserSettings]) -> Optional[ZoneInfo]:
    if settings is None:
        return None
    try:
        return ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


class UserSettingsService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _get(self, user_id: str) -> UserSettings:
        with Session(self.engine) as db:
            row = db.get(UserSettings, user_id)
            if row is None:
                return UserSettings(user_id=user_id)
            db.expunge(row)
            return row

    def _update(self, user_id: str, fields: dict) -> UserSettings:
        with Session(self.engine) as db:
            row = db.get(UserSettings, user_id) or UserSettings(user_id=user_id)
            for key, value in fields.items():
                setattr(row, key, value)
            db.add(row)
            db.commit()
            db.refresh(row)
            db.expunge(row)
            return row

    async def get(self, user_id: str) -> UserSettings:
        try:
            return await run_in_threadpool(self._get, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def update(
        self,
        user_id: str,
        target_bedtime: Optional[str] = None,
        target_wake_time: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> UserSettings:
        fields = {}
        if target_bedtime is not None:
            fields["target_bedtime"] = normalize_time(target_bedtime, "Target bedtime")
        if target_wake_time is not None:
            fields["target_wake_time"] = normalize_time(target_wake_time, "Target wake time")
        if timezone is not None:
            try:
                ZoneInfo(timezone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValidationError(f"Unknown timezone: {timezone}") from e
            fields["timezone"] = timezone
        try:
            return await run_in_threadpool(self._update, user_id, fields)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
