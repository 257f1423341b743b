"""
Authentication providers. The session lifecycle only needs `current_user()` and
an awaitable `refresh_session()`; both keep the shared `is_logged_in` flag in
step so the widget can show a sign-in prompt.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import httpx

from errors import Unauthenticated
from state_store import SessionStateStore, SharedStateDirectory

logger = logging.getLogger(__name__)


class AuthProvider(ABC):
    @abstractmethod
    def current_user(self) -> Optional[str]:
        """User id, or None. Only trustworthy after `refresh_session()`."""

    @abstractmethod
    async def refresh_session(self) -> None: ...


class StaticAuthProvider(AuthProvider):
    """A fixed identity, e.g. one resolved from a request header."""

    def __init__(self, user_id: Optional[str], state_store: Optional[SessionStateStore] = None):
        self._user_id = user_id or None
        self.state_store = state_store

    def current_user(self) -> Optional[str]:
        return self._user_id

    async def refresh_session(self) -> None:
        if self.state_store is not None:
            self.state_store.is_logged_in = self._user_id is not None


class SupabaseAuthProvider(AuthProvider):
    """
    Password sign-in against Supabase GoTrue (`/auth/v1`). `on_token` receives
    the user's access token after sign-in or refresh, and None after sign-out,
    so REST clients can act under row-level security as that user.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        shared: SharedStateDirectory,
        on_token: Optional[Callable[[Optional[str]], None]] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shared = shared
        self.on_token = on_token
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/auth/v1", timeout=30.0, transport=transport
        )
        self._client.headers.update({"apikey": api_key, "Content-Type": "application/json"})
        self.access_token: Optional[str] = None
        self._user_id: Optional[str] = None

    def current_user(self) -> Optional[str]:
        return self._user_id

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _signed_in(self, user_id: str) -> None:
        self._user_id = user_id
        self.shared.for_user(user_id).is_logged_in = True
        if self.on_token is not None:
            self.on_token(self.access_token)

    def _signed_out(self) -> None:
        if self._user_id is not None:
            self.shared.for_user(self._user_id).is_logged_in = False
        self._user_id = None
        if self.on_token is not None:
            self.on_token(None)

    async def refresh_session(self) -> None:
        if not self.access_token:
            self._signed_out()
            return
        try:
            r = await self._client.get("/user", headers=self._auth_headers())
            r.raise_for_status()
            user_id = str(r.json()["id"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("session refresh failed: %s", e)
            self.access_token = None
            self._signed_out()
            return
        self._signed_in(user_id)

    async def sign_in(self, email: str, password: str) -> str:
        try:
            r = await self._client.post(
                "/token", params={"grant_type": "password"}, json={"email": email, "password": password}
            )
            r.raise_for_status()
            payload = r.json()
            token = payload["access_token"]
            user_id = str(payload["user"]["id"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("sign in failed for %s: %s", email, e)
            raise Unauthenticated("Invalid email or password.") from e
        self.access_token = token
        self._signed_in(user_id)
        return user_id

    async def sign_out(self) -> Optional[str]:
        """Returns the id of the user that was signed in, if any."""
        user_id = self._user_id
        if self.access_token:
            try:
                r = await self._client.post("/logout", headers=self._auth_headers())
                r.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("remote sign out failed, clearing local session anyway: %s", e)
        self.access_token = None
        self._signed_out()
        return user_id

    async def aclose(self) -> None:
        await self._client.aclose()
