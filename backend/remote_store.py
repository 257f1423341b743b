"""
Remote sleep_sessions table access.

`RemoteSessionStore` is the narrow interface the session lifecycle needs. Two
backends implement it: `SQLSessionStore` (SQLModel; the blocking work runs in
the threadpool so every call is awaitable) and `PostgrestSessionStore`
(Supabase REST over httpx). Both raise `PersistenceError` on failure.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from errors import PersistenceError
from models import SleepSession, to_iso

logger = logging.getLogger(__name__)

TABLE = "sleep_sessions"


class RemoteSessionStore(ABC):
    @abstractmethod
    async def insert(self, session: SleepSession) -> SleepSession: ...

    @abstractmethod
    async def select_open_session(self, user_id: str) -> Optional[SleepSession]:
        """Most recent session with no end_time, if any."""

    @abstractmethod
    async def select_recent(self, user_id: str, limit: int) -> list[SleepSession]:
        """Newest first by start_time."""

    @abstractmethod
    async def get(self, session_id: str, user_id: Optional[str] = None) -> Optional[SleepSession]: ...

    @abstractmethod
    async def update(
        self, session_id: str, fields: dict[str, Any], user_id: Optional[str] = None
    ) -> Optional[SleepSession]:
        """Apply `fields`; returns the updated row or None when nothing matched."""

    @abstractmethod
    async def delete(self, session_id: str, user_id: Optional[str] = None) -> bool: ...

    async def aclose(self) -> None:
        return None


# --- SQLModel backend ---


class SQLSessionStore(RemoteSessionStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as e:
            logger.error("sleep_sessions query failed: %s", e)
            raise PersistenceError(str(e.orig) if getattr(e, "orig", None) else str(e)) from e

    def _insert(self, session: SleepSession) -> SleepSession:
        row = session.copy_detached()
        with Session(self.engine) as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.copy_detached()

    def _select_open(self, user_id: str) -> Optional[SleepSession]:
        statement = (
            select(SleepSession)
            .where(SleepSession.user_id == user_id, SleepSession.end_time.is_(None))
            .order_by(SleepSession.start_time.desc())
            .limit(1)
        )
        with Session(self.engine) as db:
            row = db.exec(statement).first()
            return row.copy_detached() if row else None

    def _select_recent(self, user_id: str, limit: int) -> list[SleepSession]:
        statement = (
            select(SleepSession)
            .where(SleepSession.user_id == user_id)
            .order_by(SleepSession.start_time.desc())
            .limit(limit)
        )
        with Session(self.engine) as db:
            return [row.copy_detached() for row in db.exec(statement).all()]

    def _find(self, db: Session, session_id: str, user_id: Optional[str]) -> Optional[SleepSession]:
        statement = select(SleepSession).where(SleepSession.id == session_id)
        if user_id is not None:
            statement = statement.where(SleepSession.user_id == user_id)
        return db.exec(statement).one_or_none()

    def _get(self, session_id: str, user_id: Optional[str]) -> Optional[SleepSession]:
        with Session(self.engine) as db:
            row = self._find(db, session_id, user_id)
            return row.copy_detached() if row else None

    def _update(self, session_id: str, fields: dict[str, Any], user_id: Optional[str]) -> Optional[SleepSession]:
        with Session(self.engine) as db:
            row = self._find(db, session_id, user_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.copy_detached()

    def _delete(self, session_id: str, user_id: Optional[str]) -> bool:
        with Session(self.engine) as db:
            row = self._find(db, session_id, user_id)
            if not row:
                return False
            db.delete(row)
            db.commit()
            return True

    async def insert(self, session: SleepSession) -> SleepSession:
        return await self._run(self._insert, session)

    async def select_open_session(self, user_id: str) -> Optional[SleepSession]:
        return await self._run(self._select_open, user_id)

    async def select_recent(self, user_id: str, limit: int) -> list[SleepSession]:
        return await self._run(self._select_recent, user_id, limit)

    async def get(self, session_id: str, user_id: Optional[str] = None) -> Optional[SleepSession]:
        return await self._run(self._get, session_id, user_id)

    async def update(
        self, session_id: str, fields: dict[str, Any], user_id: Optional[str] = None
    ) -> Optional[SleepSession]:
        return await self._run(self._update, session_id, fields, user_id)

    async def delete(self, session_id: str, user_id: Optional[str] = None) -> bool:
        return await self._run(self._delete, session_id, user_id)


# --- Supabase REST backend ---


class PostgrestSessionStore(RemoteSessionStore):
    """
    Talks to `{SUPABASE_URL}/rest/v1/sleep_sessions`. Row-level security on the
    server scopes rows to the bearer token's user; the explicit user_id filters
    are kept anyway.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1", headers=headers, timeout=timeout, transport=transport
        )
        if client is not None:
            self._client.headers.update(headers)

    def set_access_token(self, token: Optional[str]) -> None:
        """Act as the signed-in user; None falls back to the anon key."""
        self._client.headers["Authorization"] = f"Bearer {token or self.api_key}"

    async def _request(self, method: str, params: dict[str, str], **kwargs) -> list[dict]:
        try:
            r = await self._client.request(method, f"/{TABLE}", params=params, **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            try:
                detail = e.response.json().get("message") or detail
            except ValueError:
                pass
            logger.error("[postgrest] HTTP %s on %s %s: %s", e.response.status_code, method, TABLE, detail)
            raise PersistenceError(detail or str(e)) from e
        except httpx.HTTPError as e:
            logger.error("[postgrest] transport error on %s %s: %s", method, TABLE, e)
            raise PersistenceError(str(e) or e.__class__.__name__) from e
        if not r.content:
            return []
        data = r.json()
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _filters(session_id: str, user_id: Optional[str]) -> dict[str, str]:
        params = {"id": f"eq.{session_id}"}
        if user_id is not None:
            params["user_id"] = f"eq.{user_id}"
        return params

    async def insert(self, session: SleepSession) -> SleepSession:
        rows = await self._request(
            "POST", {}, json=session.to_record(), headers={"Prefer": "return=representation"}
        )
        return SleepSession.from_record(rows[0]) if rows else session.copy_detached()

    async def select_open_session(self, user_id: str) -> Optional[SleepSession]:
        rows = await self._request(
            "GET",
            {
                "select": "*",
                "user_id": f"eq.{user_id}",
                "end_time": "is.null",
                "order": "start_time.desc",
                "limit": "1",
            },
        )
        return SleepSession.from_record(rows[0]) if rows else None

    async def select_recent(self, user_id: str, limit: int) -> list[SleepSession]:
        rows = await self._request(
            "GET",
            {"select": "*", "user_id": f"eq.{user_id}", "order": "start_time.desc", "limit": str(limit)},
        )
        return [SleepSession.from_record(row) for row in rows]

    async def get(self, session_id: str, user_id: Optional[str] = None) -> Optional[SleepSession]:
        rows = await self._request("GET", {"select": "*", **self._filters(session_id, user_id)})
        return SleepSession.from_record(rows[0]) if rows else None

    async def update(
        self, session_id: str, fields: dict[str, Any], user_id: Optional[str] = None
    ) -> Optional[SleepSession]:
        body = {k: to_iso(v) if hasattr(v, "isoformat") else v for k, v in fields.items()}
        rows = await self._request(
            "PATCH",
            self._filters(session_id, user_id),
            json=body,
            headers={"Prefer": "return=representation"},
        )
        return SleepSession.from_record(rows[0]) if rows else None

    async def delete(self, session_id: str, user_id: Optional[str] = None) -> bool:
        rows = await self._request(
            "DELETE", self._filters(session_id, user_id), headers={"Prefer": "return=representation"}
        )
        return bool(rows)

    async def aclose(self) -> None:
        await self._client.aclose()
