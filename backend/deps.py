"""
Service wiring. The process entry point builds one Container and hands it to
every surface; nothing here is a global singleton.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, Request
from sqlalchemy.engine import Engine

from auth import AuthProvider, StaticAuthProvider, SupabaseAuthProvider
from config import Settings
from db import create_tables, make_engine
from errors import Unauthenticated
from remote_store import PostgrestSessionStore, RemoteSessionStore, SQLSessionStore
from session_service import SleepSessionService
from settings_service import UserSettingsService
from state_store import SharedStateDirectory

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Engine
    store: RemoteSessionStore
    shared: SharedStateDirectory
    sessions: SleepSessionService
    user_settings: UserSettingsService
    # Set for the Supabase backend only; the SQL backend trusts X-User-Id.
    auth: Optional[SupabaseAuthProvider] = None

    def auth_for(self, user_id: Optional[str]) -> AuthProvider:
        if self.auth is not None:
            return self.auth
        state = self.shared.for_user(user_id) if user_id else None
        return StaticAuthProvider(user_id, state)

    async def aclose(self) -> None:
        await self.store.aclose()
        if self.auth is not None:
            await self.auth.aclose()
        self.engine.dispose()


def build_container(
    settings: Settings,
    store: Optional[RemoteSessionStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    engine = make_engine(settings.database_url)
    create_tables(engine)
    shared = SharedStateDirectory(settings.shared_state_dir)

    auth = None
    if store is None:
        if settings.store_backend == "postgrest":
            if not settings.supabase_url or not settings.supabase_key:
                raise RuntimeError("SNEUZ_STORE=postgrest needs SUPABASE_URL and SUPABASE_ANON_KEY")
            rest = PostgrestSessionStore(settings.supabase_url, settings.supabase_key, transport=transport)
            auth = SupabaseAuthProvider(
                settings.supabase_url,
                settings.supabase_key,
                shared,
                on_token=rest.set_access_token,
                transport=transport,
            )
            store = rest
        else:
            store = SQLSessionStore(engine)
    logger.info("sleep sessions backed by %s", store.__class__.__name__)

    return Container(
        settings=settings,
        engine=engine,
        store=store,
        shared=shared,
        sessions=SleepSessionService(store, shared, recent_limit=settings.recent_limit),
        user_settings=UserSettingsService(engine),
        auth=auth,
    )


def get_container(request: Request) -> Container:
    return request.app.state.container


def current_user_id(
    request: Request,
    user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    auth = get_container(request).auth
    if auth is not None:
        signed_in = auth.current_user()
        if not signed_in:
            raise Unauthenticated()
        return signed_in
    if not user_id or not user_id.strip():
        raise Unauthenticated("Missing X-User-Id header")
    return user_id.strip()
