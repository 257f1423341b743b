import httpx
import pytest

from auth import SupabaseAuthProvider
from errors import Unauthenticated

pytestmark = pytest.mark.anyio


def _provider(shared, handler, tokens=None):
    on_token = tokens.append if tokens is not None else None
    return SupabaseAuthProvider(
        "https://db.test", "anon-key", shared, on_token=on_token, transport=httpx.MockTransport(handler)
    )


def _gotrue(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/auth/v1/token":
        body = request.read()
        if b"wrong" in body:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "jwt-1", "user": {"id": "user-1"}})
    if request.url.path == "/auth/v1/user":
        if request.headers.get("Authorization") == "Bearer jwt-1":
            return httpx.Response(200, json={"id": "user-1"})
        return httpx.Response(401, json={"message": "expired"})
    if request.url.path == "/auth/v1/logout":
        return httpx.Response(204)
    return httpx.Response(404)


async def test_sign_in_refresh_sign_out(shared, state_store):
    tokens = []
    auth = _provider(shared, _gotrue, tokens)

    assert await auth.sign_in("me@example.com", "secret") == "user-1"
    assert state_store.is_logged_in is True

    await auth.refresh_session()
    assert auth.current_user() == "user-1"

    assert await auth.sign_out() == "user-1"
    assert auth.current_user() is None
    assert state_store.is_logged_in is False
    assert tokens == ["jwt-1", "jwt-1", None]


async def test_bad_password(shared, state_store):
    tokens = []
    auth = _provider(shared, _gotrue, tokens)

    with pytest.raises(Unauthenticated):
        await auth.sign_in("me@example.com", "wrong")
    assert state_store.is_logged_in is False
    assert tokens == []


async def test_expired_token_logs_out(shared, state_store):
    tokens = []
    auth = _provider(shared, _gotrue, tokens)
    await auth.sign_in("me@example.com", "secret")
    auth.access_token = "stale"

    await auth.refresh_session()

    assert auth.current_user() is None
    assert auth.access_token is None
    assert state_store.is_logged_in is False
    assert tokens[-1] is None
