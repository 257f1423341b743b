from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field

DEFAULT_SOURCE = "manual"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (SQLite drops tzinfo) are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


def parse_iso(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(raw))


class SleepSession(SQLModel, table=True):
    __tablename__ = "sleep_sessions"
    # At most one open session per user.
    __table_args__ = (
        Index(
            "uq_sleep_sessions_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id: str = Field(primary_key=True, index=True)
    user_id: str = Field(index=True)
    start_time: datetime = Field(index=True)
    end_time: Optional[datetime] = None
    source: str = DEFAULT_SOURCE
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time is None:
            return None
        return ensure_utc(self.end_time) - ensure_utc(self.start_time)

    def to_record(self) -> dict:
        """Wire form: snake_case keys, ISO-8601 timestamps."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "source": self.source,
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: dict) -> "SleepSession":
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            start_time=parse_iso(data["start_time"]),
            end_time=parse_iso(data.get("end_time")),
            source=data.get("source") or DEFAULT_SOURCE,
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )

    def copy_detached(self) -> "SleepSession":
        return SleepSession.from_record(self.to_record())


class UserSettings(SQLModel, table=True):
    __tablename__ = "user_settings"

    user_id: str = Field(primary_key=True)
    target_bedtime: str = "23:00:00"
    target_wake_time: str = "07:00:00"
    timezone: str = "UTC"
