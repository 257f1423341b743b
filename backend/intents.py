"""
Shortcut / voice entry points: Start, Stop and Toggle sleep tracking.

Each one refreshes auth, checks the signed-in user's shared tracking flag,
calls the session service and asks display surfaces to re-render. Redundant
requests come back as AlreadyTracking / NotTracking so the caller can show
them to the user.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from auth import AuthProvider
from errors import AlreadyTracking, NotTracking, SneuzError, Unauthenticated
from models import SleepSession
from session_service import SleepSessionService

logger = logging.getLogger(__name__)

STARTED = "Sleep tracking started."
STOPPED = "Good morning! Sleep tracking stopped."


@dataclass
class IntentResult:
    action: str
    message: str
    session: Optional[SleepSession] = None


class TrackingIntents:
    def __init__(self, auth: AuthProvider, service: SleepSessionService):
        self.auth = auth
        self.service = service

    async def _user(self, intent: str) -> str:
        await self.auth.refresh_session()
        user_id = self.auth.current_user()
        if not user_id:
            logger.error("%s: no user logged in", intent)
            raise Unauthenticated()
        return user_id

    async def start(self) -> IntentResult:
        logger.info("StartTracking: perform called")
        user_id = await self._user("StartTracking")
        state = self.service.state_for(user_id)
        if state.is_tracking:
            logger.warning("StartTracking: already tracking, ignoring")
            raise AlreadyTracking()
        try:
            session = await self.service.start_tracking(user_id)
        except SneuzError as e:
            logger.error("StartTracking failed: %s", e.message)
            raise
        state.request_reload()
        return IntentResult(action="started", message=STARTED, session=session)

    async def stop(self) -> IntentResult:
        logger.info("StopTracking: perform called")
        user_id = await self._user("StopTracking")
        state = self.service.state_for(user_id)
        if not state.is_tracking:
            logger.warning("StopTracking: not tracking, ignoring")
            raise NotTracking()
        try:
            session = await self.service.stop_tracking(user_id)
        except SneuzError as e:
            logger.error("StopTracking failed: %s", e.message)
            raise
        state.request_reload()
        return IntentResult(action="stopped", message=STOPPED, session=session)

    async def toggle(self) -> IntentResult:
        logger.info("ToggleTracking: perform called")
        user_id = await self._user("ToggleTracking")
        state = self.service.state_for(user_id)
        tracking = state.is_tracking
        logger.info("ToggleTracking: current tracking state %s", tracking)
        try:
            if tracking:
                session = await self.service.stop_tracking(user_id)
                result = IntentResult(action="stopped", message=STOPPED, session=session)
            else:
                session = await self.service.start_tracking(user_id)
                result = IntentResult(action="started", message=STARTED, session=session)
        except SneuzError as e:
            logger.error("ToggleTracking failed: %s", e.message)
            raise
        state.request_reload()
        return result
