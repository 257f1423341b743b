from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from errors import PersistenceError
from models import SleepSession
from session_service import SleepSessionService
from state_store import SessionStateStore, SharedStateDirectory

UTC = timezone.utc


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRemoteStore:
    """In-memory sleep_sessions table. Add method names to `fail_on` to make them raise."""

    def __init__(self) -> None:
        self.rows: List[SleepSession] = []
        self.fail_on: set[str] = set()
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise PersistenceError(f"{name} unavailable")

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def open_rows(self, user_id: str) -> List[SleepSession]:
        return [r for r in self.rows if r.user_id == user_id and r.end_time is None]

    def _find(self, session_id: str, user_id: Optional[str]) -> Optional[SleepSession]:
        for row in self.rows:
            if row.id == session_id and (user_id is None or row.user_id == user_id):
                return row
        return None

    async def insert(self, session: SleepSession) -> SleepSession:
        self._check("insert")
        self.rows.append(session.copy_detached())
        return session.copy_detached()

    async def select_open_session(self, user_id: str) -> Optional[SleepSession]:
        self._check("select_open_session")
        rows = sorted(self.open_rows(user_id), key=lambda r: r.start_time, reverse=True)
        return rows[0].copy_detached() if rows else None

    async def select_recent(self, user_id: str, limit: int) -> List[SleepSession]:
        self._check("select_recent")
        rows = sorted((r for r in self.rows if r.user_id == user_id), key=lambda r: r.start_time, reverse=True)
        return [r.copy_detached() for r in rows[:limit]]

    async def get(self, session_id: str, user_id: Optional[str] = None) -> Optional[SleepSession]:
        self._check("get")
        row = self._find(session_id, user_id)
        return row.copy_detached() if row else None

    async def update(self, session_id: str, fields: dict[str, Any], user_id: Optional[str] = None):
        self._check("update")
        row = self._find(session_id, user_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        return row.copy_detached()

    async def delete(self, session_id: str, user_id: Optional[str] = None) -> bool:
        self._check("delete")
        row = self._find(session_id, user_id)
        if row is None:
            return False
        self.rows.remove(row)
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 23, 0, tzinfo=UTC))


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def shared(tmp_path) -> SharedStateDirectory:
    return SharedStateDirectory(tmp_path / "group")


@pytest.fixture
def state_store(shared) -> SessionStateStore:
    return shared.for_user("user-1")


@pytest.fixture
def service(store, shared, clock) -> SleepSessionService:
    counter = iter(range(1, 1000))
    return SleepSessionService(
        store,
        shared,
        recent_limit=60,
        clock=clock,
        id_factory=lambda: f"sess-{next(counter)}",
    )


def make_session(
    session_id: str,
    user_id: str,
    start: datetime,
    end: Optional[datetime] = None,
) -> SleepSession:
    return SleepSession(
        id=session_id,
        user_id=user_id,
        start_time=start,
        end_time=end,
        source="manual",
        updated_at=end or start,
    )
