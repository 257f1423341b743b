import json
from datetime import datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from config import Settings
from deps import build_container
from main import create_app

pytestmark = pytest.mark.anyio

HEADERS = {"X-User-Id": "user-1"}


@pytest.fixture
def container(tmp_path):
    settings = Settings(
        database_url="sqlite://",
        store_backend="sql",
        shared_state_dir=str(tmp_path / "shared"),
        export_path=str(tmp_path / "export.jsonl"),
        recent_limit=60,
        cors_origins=["http://localhost:3000"],
    )
    c = build_container(settings)
    yield c
    c.engine.dispose()


@pytest.fixture
async def client(container):
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_missing_user_header(client):
    r = await client.post("/api/sessions/start")
    assert r.status_code == 401


async def test_start_stop_through_api(client, container):
    r = await client.post("/api/sessions/start", headers=HEADERS)
    assert r.status_code == 200
    started = r.json()
    assert started["end_time"] is None
    assert container.shared.for_user("user-1").is_tracking is True

    again = await client.post("/api/sessions/start", headers=HEADERS)
    assert again.json()["id"] == started["id"]

    widget = (await client.get("/api/widget", headers=HEADERS)).json()
    assert widget["is_tracking"] is True
    assert widget["action_label"] == "Wake Up"

    r = await client.post("/api/sessions/stop", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["stopped"]["id"] == started["id"]
    assert container.shared.for_user("user-1").is_tracking is False

    r = await client.post("/api/sessions/stop", headers=HEADERS)
    assert r.json() == {"stopped": None}


async def test_manual_entries(client):
    body = {"start_time": "2024-01-01T23:00:00Z", "end_time": "2024-01-02T07:00:00Z"}
    r = await client.post("/api/sessions", json=body, headers=HEADERS)
    assert r.status_code == 201
    created = r.json()
    assert created["duration_minutes"] == 480
    assert created["duration_label"] == "8h 0m"

    bad = {"start_time": "2024-01-02T07:00:00Z", "end_time": "2024-01-01T23:00:00Z"}
    r = await client.post("/api/sessions", json=bad, headers=HEADERS)
    assert r.status_code == 422

    r = await client.patch(
        f"/api/sessions/{created['id']}", json={"end_time": "2024-01-02T06:30:00Z"}, headers=HEADERS
    )
    assert r.status_code == 200
    assert r.json()["duration_label"] == "7h 30m"

    listed = (await client.get("/api/sessions", headers=HEADERS)).json()
    assert [s["id"] for s in listed] == [created["id"]]

    r = await client.delete(f"/api/sessions/{created['id']}", headers=HEADERS)
    assert r.status_code == 204
    r = await client.delete(f"/api/sessions/{created['id']}", headers=HEADERS)
    assert r.status_code == 404


async def test_refresh_self_heals_shared_flag(client, container):
    container.shared.for_user("user-1").set_tracking(True, datetime(2024, 1, 1, tzinfo=timezone.utc))

    r = await client.post("/api/sessions/refresh", headers=HEADERS)

    assert r.status_code == 200
    assert r.json() == {"active": None, "sessions": []}
    assert container.shared.for_user("user-1").is_tracking is False


async def test_intents_report_redundant_requests(client):
    r = await client.post("/api/intents/start", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["action"] == "started"

    r = await client.post("/api/intents/start", headers=HEADERS)
    assert r.status_code == 409
    assert r.json()["detail"] == "You are already sleeping."

    r = await client.post("/api/intents/toggle", headers=HEADERS)
    assert r.json()["action"] == "stopped"

    r = await client.post("/api/intents/stop", headers=HEADERS)
    assert r.status_code == 409
    assert r.json()["detail"] == "You are not currently sleeping."


async def test_settings_and_stats(client):
    r = await client.get("/api/settings", headers=HEADERS)
    assert r.json()["target_bedtime"] == "23:00:00"

    r = await client.put("/api/settings", json={"target_bedtime": "22:30", "timezone": "UTC"}, headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["target_bedtime"] == "22:30:00"

    r = await client.put("/api/settings", json={"target_wake_time": "7am"}, headers=HEADERS)
    assert r.status_code == 422

    body = {"start_time": "2024-01-01T23:00:00Z", "end_time": "2024-01-02T07:00:00Z"}
    await client.post("/api/sessions", json=body, headers=HEADERS)

    stats = (await client.get("/api/stats", headers=HEADERS)).json()
    assert stats["completed_sessions"] == 1
    assert stats["total_minutes"] == 480

    chart = (await client.get("/api/stats/chart?days=30", headers=HEADERS)).json()
    assert chart["days"] == 30
    assert len(chart["points"]) == 30
    assert chart["targets"] == {"bedtime": 22.5, "wake_time": 31.0}


async def test_export(client, container, tmp_path):
    body = {"start_time": "2024-01-01T23:00:00Z", "end_time": "2024-01-02T07:00:00Z"}
    created = (await client.post("/api/sessions", json=body, headers=HEADERS)).json()
    await client.post("/api/sessions/start", headers=HEADERS)

    r = await client.post("/api/sessions/export", headers=HEADERS)

    report = r.json()
    assert report["exported"] == [created["id"]]
    assert len(report["skipped"]) == 1
    assert report["failed"] == {}


async def test_one_users_calls_leave_another_asleep(client, container):
    alice = {"X-User-Id": "alice"}
    bob = {"X-User-Id": "bob"}

    r = await client.post("/api/sessions/start", headers=alice)
    assert r.status_code == 200

    await client.get("/api/sessions", headers=bob)
    await client.post("/api/sessions/refresh", headers=bob)
    assert container.shared.for_user("alice").is_tracking is True
    assert container.shared.for_user("bob").is_tracking is False

    r = await client.post("/api/intents/start", headers=bob)
    assert r.status_code == 200

    widget = (await client.get("/api/widget", headers=alice)).json()
    assert widget["is_tracking"] is True

    r = await client.post("/api/intents/stop", headers=alice)
    assert r.status_code == 200
    assert r.json()["action"] == "stopped"
    assert container.shared.for_user("bob").is_tracking is True


async def test_sign_out_drops_cached_state(client, container):
    await client.post("/api/sessions/start", headers=HEADERS)
    assert container.sessions.active_session("user-1") is not None

    r = await client.post("/api/auth/sign-out", headers=HEADERS)

    assert r.status_code == 200
    assert container.sessions.active_session("user-1") is None
    assert container.shared.for_user("user-1").is_logged_in is False

    r = await client.post("/api/auth/sign-in", json={"email": "a@b.c", "password": "x"})
    assert r.status_code == 404


class FakeSupabase:
    """Just enough GoTrue and PostgREST for one user."""

    def __init__(self):
        self.rows = []
        self.rest_auth = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/v1/token":
            return httpx.Response(200, json={"access_token": "jwt-1", "user": {"id": "user-1"}})
        if path == "/auth/v1/user":
            return httpx.Response(200, json={"id": "user-1"})
        if path == "/auth/v1/logout":
            return httpx.Response(204)
        if path == "/rest/v1/sleep_sessions":
            self.rest_auth.append(request.headers["Authorization"])
            if request.method == "POST":
                row = json.loads(request.content)
                self.rows.append(row)
                return httpx.Response(201, json=[row])
            if request.method == "GET":
                rows = self.rows
                if request.url.params.get("end_time") == "is.null":
                    rows = [r for r in rows if r["end_time"] is None]
                return httpx.Response(200, json=rows)
        return httpx.Response(404)


async def test_supabase_backend_acts_as_signed_in_user(tmp_path):
    supabase = FakeSupabase()
    settings = Settings(
        database_url="sqlite://",
        store_backend="postgrest",
        supabase_url="https://db.test",
        supabase_key="anon-key",
        shared_state_dir=str(tmp_path / "shared"),
        export_path=str(tmp_path / "export.jsonl"),
    )
    container = build_container(settings, transport=httpx.MockTransport(supabase))
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        r = await client.post("/api/sessions/start")
        assert r.status_code == 401

        r = await client.post("/api/auth/sign-in", json={"email": "me@example.com", "password": "secret"})
        assert r.json() == {"user_id": "user-1"}
        assert container.shared.for_user("user-1").is_logged_in is True

        r = await client.post("/api/sessions/start")
        assert r.status_code == 200
        assert len(supabase.rows) == 1
        assert supabase.rest_auth and set(supabase.rest_auth) == {"Bearer jwt-1"}
        assert container.sessions.active_session("user-1") is not None

        r = await client.post("/api/auth/sign-out")
        assert r.status_code == 200
        assert container.sessions.active_session("user-1") is None
        assert container.shared.for_user("user-1").is_logged_in is False

        r = await client.post("/api/sessions/start")
        assert r.status_code == 401
    await container.aclose()
