"""
Sleep session lifecycle: start, stop and resume tracking, plus manual CRUD.

Three places hold tracking state: the remote sleep_sessions table (source of
truth), this service's in-memory cache, and the per-user SessionStateStore
shared with other processes. After every successful operation the user's
shared flag equals "the cache holds an active session", and the shared start
time equals that session's start time.

Callers in one process must not overlap start/stop calls for the same user.
Across processes the remote store is last-write-wins and
`refresh_from_remote` is how everyone converges.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from errors import PersistenceError, SessionNotFound, Unauthenticated, ValidationError
from models import DEFAULT_SOURCE, SleepSession, ensure_utc, utc_now
from remote_store import RemoteSessionStore
from state_store import SessionStateStore, SharedStateDirectory

logger = logging.getLogger(__name__)


def validate_times(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is None:
        raise ValidationError("Bedtime is required.")
    if end is not None and ensure_utc(end) < ensure_utc(start):
        raise ValidationError("Wake time must be after bedtime.")


class SleepSessionService:
    def __init__(
        self,
        store: RemoteSessionStore,
        shared: SharedStateDirectory,
        recent_limit: int = 60,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.shared = shared
        self.recent_limit = recent_limit
        self.clock = clock
        self.id_factory = id_factory
        self._active: dict[str, SleepSession] = {}
        self._sessions: dict[str, list[SleepSession]] = {}

    # --- cached views ---

    def active_session(self, user_id: str) -> Optional[SleepSession]:
        return self._active.get(user_id)

    def sessions(self, user_id: str) -> list[SleepSession]:
        """Sessions from the last refresh, newest first."""
        return list(self._sessions.get(user_id, []))

    def state_for(self, user_id: str) -> SessionStateStore:
        return self.shared.for_user(user_id)

    def forget(self, user_id: str) -> None:
        """Drop cached state for a user (sign out). Shared flags are left to the caller."""
        self._active.pop(user_id, None)
        self._sessions.pop(user_id, None)

    # --- reconciliation ---

    def _adopt(self, user_id: str, session: SleepSession) -> None:
        self._active[user_id] = session
        start = ensure_utc(session.start_time)
        state = self.state_for(user_id)
        if not state.is_tracking or state.start_time != start:
            state.set_tracking(True, start)

    def _clear_active(self, user_id: str) -> None:
        self._active.pop(user_id, None)
        self.state_for(user_id).set_tracking(False, None)

    async def _refresh_quietly(self, user_id: str) -> None:
        try:
            await self.refresh_from_remote(user_id)
        except PersistenceError as e:
            logger.error("refresh after write failed for user %s: %s", user_id, e.message)

    @staticmethod
    def _require_user(user_id: Optional[str]) -> str:
        if not user_id:
            raise Unauthenticated()
        return user_id

    # --- tracking ---

    async def start_tracking(self, user_id: Optional[str]) -> SleepSession:
        """Begin tracking now, or return the session that is already open."""
        user_id = self._require_user(user_id)

        cached = self._active.get(user_id)
        if cached is not None:
            logger.info("start_tracking: already tracking %s locally, ignoring", cached.id)
            return cached

        existing = await self.store.select_open_session(user_id)
        if existing is not None:
            logger.info("start_tracking: adopting open remote session %s", existing.id)
            self._adopt(user_id, existing)
            return existing

        now = self.clock()
        session = SleepSession(
            id=self.id_factory(),
            user_id=user_id,
            start_time=now,
            end_time=None,
            source=DEFAULT_SOURCE,
            updated_at=now,
        )
        created = await self.store.insert(session)
        logger.info("start_tracking: created session %s for user %s", created.id, user_id)
        self._adopt(user_id, created)
        await self._refresh_quietly(user_id)
        return created

    async def stop_tracking(self, user_id: Optional[str]) -> Optional[SleepSession]:
        """
        Close the open session. With nothing open this is a no-op that still
        clears the shared tracking flag. Returns the closed session, if any.
        """
        user_id = self._require_user(user_id)

        target = self._active.get(user_id)
        if target is None:
            target = await self.store.select_open_session(user_id)
            if target is not None:
                logger.info("stop_tracking: found open remote session %s", target.id)
                self._adopt(user_id, target)

        if target is None:
            logger.info("stop_tracking: no open session for user %s, clearing shared flag", user_id)
            self.state_for(user_id).set_tracking(False, None)
            return None

        now = self.clock()
        updated = await self.store.update(target.id, {"end_time": now, "updated_at": now}, user_id)
        if updated is None:
            logger.warning("stop_tracking: session %s vanished remotely", target.id)
        else:
            logger.info("stop_tracking: stopped session %s", updated.id)
        self._clear_active(user_id)
        await self._refresh_quietly(user_id)
        return updated

    async def refresh_from_remote(self, user_id: Optional[str]) -> list[SleepSession]:
        """
        Re-read recent sessions and make the cache and shared state agree with
        them: the newest session is active iff it has no end time. Idempotent.
        """
        user_id = self._require_user(user_id)
        sessions = await self.store.select_recent(user_id, self.recent_limit)
        self._sessions[user_id] = sessions

        latest = sessions[0] if sessions else None
        if latest is not None and latest.end_time is None:
            self._adopt(user_id, latest)
        else:
            self._active.pop(user_id, None)
            state = self.state_for(user_id)
            if state.is_tracking or state.start_time is not None:
                logger.info("refresh: user %s has no open session, resetting shared state", user_id)
                state.set_tracking(False, None)
        return list(sessions)

    # --- manual entries ---

    async def create_manual_session(
        self, user_id: Optional[str], start: datetime, end: Optional[datetime]
    ) -> SleepSession:
        user_id = self._require_user(user_id)
        if end is None:
            raise ValidationError("Wake time is required for a manual entry.")
        validate_times(start, end)

        session = SleepSession(
            id=self.id_factory(),
            user_id=user_id,
            start_time=ensure_utc(start),
            end_time=ensure_utc(end),
            source=DEFAULT_SOURCE,
            updated_at=self.clock(),
        )
        created = await self.store.insert(session)
        logger.info("created manual session %s for user %s", created.id, user_id)
        await self._refresh_quietly(user_id)
        return created

    async def update_session(
        self,
        user_id: Optional[str],
        session_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SleepSession:
        """Change bedtime and/or wake time; times are validated against the merged result."""
        user_id = self._require_user(user_id)
        if start is None and end is None:
            raise ValidationError("Nothing to update.")

        if start is not None and end is not None:
            validate_times(start, end)
        else:
            current = await self.store.get(session_id, user_id)
            if current is None:
                raise SessionNotFound(session_id)
            validate_times(start or current.start_time, end or current.end_time)

        fields = {"updated_at": self.clock()}
        if start is not None:
            fields["start_time"] = ensure_utc(start)
        if end is not None:
            fields["end_time"] = ensure_utc(end)

        updated = await self.store.update(session_id, fields, user_id)
        if updated is None:
            raise SessionNotFound(session_id)

        active = self._active.get(user_id)
        if active is not None and active.id == updated.id:
            if updated.end_time is not None:
                self._clear_active(user_id)
            else:
                self._adopt(user_id, updated)
        await self._refresh_quietly(user_id)
        return updated

    async def delete_session(self, user_id: Optional[str], session_id: str) -> None:
        user_id = self._require_user(user_id)
        deleted = await self.store.delete(session_id, user_id)
        if not deleted:
            raise SessionNotFound(session_id)
        logger.info("deleted session %s", session_id)

        active = self._active.get(user_id)
        if active is not None and active.id == session_id:
            self._clear_active(user_id)
        await self._refresh_quietly(user_id)
