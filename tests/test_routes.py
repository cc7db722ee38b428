"""
HTTP API tests using Starlette's TestClient against a fully built app with a
fake chat client factory and a mocked key API.
"""

import httpx
import pytest
from starlette.testclient import TestClient

from conftest import FakeClientFactory, make_profile
from wagate.access_key import DailyKeyService
from wagate.config import AppConfig
from wagate.server import create_app
from wagate.sessions.governor import MemorySnapshot

TODAY_KEY = "4821"
AUTH = {"X-Access-Key": TODAY_KEY}


def key_api(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"lot_unatecla": TODAY_KEY})


class FakeMemory:
    def __init__(self, rss_mb: float = 100.0):
        self.rss_mb = rss_mb

    def __call__(self) -> MemorySnapshot:
        return MemorySnapshot(rss_mb=self.rss_mb, vms_mb=self.rss_mb, percent=1.0)


@pytest.fixture
def sessions_dir(tmp_path):
    return tmp_path / "sessions"


@pytest.fixture
def factory(sessions_dir):
    return FakeClientFactory(sessions_dir)


@pytest.fixture
def memory():
    return FakeMemory()


@pytest.fixture
def app(sessions_dir, factory, memory):
    config = AppConfig(
        sessions_root=str(sessions_dir),
        qr_wait_attempts=5,
        qr_wait_interval_seconds=0.02,
        destroy_timeout_seconds=0.5,
        recovery_delay_seconds=0,
    )
    return create_app(
        config,
        client_factory=factory,
        key_service=DailyKeyService(transport=httpx.MockTransport(key_api)),
        memory_probe=memory,
        recover_on_startup=False,
        governor_enabled=False,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def emit(client, factory, session_id, event, *args):
    """Emit a client event on the app's event loop."""
    client.portal.call(factory.clients[session_id].emit, event, *args)


def connect(client, factory, session_id="abc_123"):
    response = client.post("/sessions", json={"session_id": session_id}, headers=AUTH)
    assert response.status_code == 201
    emit(client, factory, session_id, "ready")


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_shutting_down(self, client, app):
        app.state.coordinator.shutting_down = True
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "shutting_down"
        app.state.coordinator.shutting_down = False


class TestAccessKey:
    def test_missing_key_is_401(self, client):
        response = client.get("/sessions")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"

    def test_wrong_key_is_403(self, client):
        response = client.get("/sessions", headers={"X-Access-Key": "0000"})
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"headers": {"Authorization": f"Bearer {TODAY_KEY}"}},
            {"headers": {"X-Access-Key": TODAY_KEY}},
            {"params": {"key": TODAY_KEY}},
        ],
    )
    def test_key_sources(self, client, kwargs):
        response = client.get("/sessions", **kwargs)
        assert response.status_code == 200

    def test_validate_key_endpoint_is_public(self, client):
        response = client.post("/auth/validate-key", json={"key": TODAY_KEY})
        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert "expected_key" not in body

    def test_validate_key_rejects_wrong_key(self, client):
        response = client.post("/auth/validate-key", json={"key": "nope"})
        assert response.status_code == 401
        assert response.json()["valid"] is False

    def test_validate_key_exposes_expected_when_enabled(self, client, app):
        app.state.expose_expected_key = True
        response = client.post("/auth/validate-key", json={"key": "nope"})
        assert response.json()["expected_key"] == TODAY_KEY

    def test_key_cache_info(self, client):
        response = client.get("/auth/key-cache", params={"auto_load": "true"}, headers=AUTH)
        assert response.status_code == 200
        assert response.json()["cache"]["exists"] is True

    def test_refresh_key_cache(self, client):
        response = client.post("/auth/key-cache/refresh", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["cache"]["exists"] is True

    def test_gate_disabled(self, sessions_dir, factory):
        config = AppConfig(sessions_root=str(sessions_dir), access_key_required=False)
        app = create_app(
            config,
            client_factory=factory,
            key_service=DailyKeyService(transport=httpx.MockTransport(key_api)),
            recover_on_startup=False,
            governor_enabled=False,
        )
        with TestClient(app) as test_client:
            assert test_client.get("/sessions").status_code == 200


class TestQrAndStatus:
    def test_qr_creates_session_on_demand(self, client, factory):
        response = client.get("/api/qr/abc_123")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["status"] == "initializing"
        assert body["retry_after"] == 3
        assert factory.calls == ["abc_123"]

    def test_qr_returned_once_emitted(self, client, factory):
        client.get("/api/qr/abc_123")
        emit(client, factory, "abc_123", "qr", "2@abc,def")

        body = client.get("/api/qr/abc_123").json()

        assert body["success"] is True
        assert body["qr_code"] == "2@abc,def"
        assert body["status"] == "waiting_qr"

    def test_qr_wait_times_out(self, client):
        response = client.get("/api/qr/abc_123", params={"wait": "true"})

        assert response.status_code == 504
        assert response.headers["Retry-After"] == "5"
        body = response.json()
        assert body["code"] == "timeout"
        assert body["retry_after"] == 5

    def test_qr_for_connected_session(self, client, factory):
        connect(client, factory)

        body = client.get("/api/qr/abc_123").json()

        assert body["success"] is False
        assert body["status"] == "connected"
        assert body["retry_after"] is None

    def test_qr_rejects_bad_id(self, client):
        response = client.get("/api/qr/a!")
        assert response.status_code == 400

    def test_qr_refused_at_capacity(self, client, memory):
        memory.rss_mb = 4096
        response = client.get("/api/qr/abc_123")
        assert response.status_code == 503
        assert response.json()["reason"] == "memory"

    def test_status(self, client, factory):
        client.get("/api/qr/abc_123")

        response = client.get("/api/status/abc_123")

        assert response.status_code == 200
        assert response.json()["status"] == "initializing"

    def test_status_unknown(self, client):
        response = client.get("/api/status/nobody")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"


class TestSessions:
    def test_create_list_get(self, client):
        created = client.post("/sessions", json={"session_id": "sales-01"}, headers=AUTH)
        assert created.status_code == 201
        assert created.json()["session"]["status"] == "initializing"

        listed = client.get("/sessions", headers=AUTH).json()
        assert listed["count"] == 1

        detail = client.get("/sessions/sales-01", params={"messages": "true"}, headers=AUTH)
        assert detail.json()["session"]["messages"] == []

    def test_create_duplicate_is_409(self, client):
        client.post("/sessions", json={"session_id": "sales-01"}, headers=AUTH)
        response = client.post("/sessions", json={"session_id": "sales-01"}, headers=AUTH)

        assert response.status_code == 409
        assert response.json()["session"]["session_id"] == "sales-01"

    def test_create_invalid_body(self, client):
        response = client.post("/sessions", json={}, headers=AUTH)
        assert response.status_code == 400

    def test_create_at_session_cap(self, client, app):
        app.state.governor.limits = app.state.governor.limits.model_copy(
            update={"max_total_sessions": 1}
        )
        client.post("/sessions", json={"session_id": "one"}, headers=AUTH)

        response = client.post("/sessions", json={"session_id": "two"}, headers=AUTH)

        assert response.status_code == 503
        body = response.json()
        assert body["reason"] == "max_sessions"
        assert body["limit"] == 1
        assert client.get("/sessions", headers=AUTH).json()["count"] == 1

    def test_create_refused_while_shutting_down(self, client, app, factory):
        app.state.coordinator.shutting_down = True

        created = client.post("/sessions", json={"session_id": "late_1"}, headers=AUTH)
        qr = client.get("/api/qr/late_2", headers=AUTH)

        for response in (created, qr):
            assert response.status_code == 503
            assert response.json()["reason"] == "shutting_down"
        assert app.state.store.count == 0
        assert factory.calls == []

    def test_delete_keeps_data_by_default(self, client, factory, sessions_dir):
        client.post("/sessions", json={"session_id": "abc_123"}, headers=AUTH)

        response = client.delete("/sessions/abc_123", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data_deleted"] is False
        assert (sessions_dir / "abc_123").is_dir()
        assert client.get("/api/status/abc_123").status_code == 404

    def test_delete_with_data(self, client, sessions_dir):
        client.post("/sessions", json={"session_id": "abc_123"}, headers=AUTH)

        client.delete("/sessions/abc_123", params={"delete_data": "true"}, headers=AUTH)

        assert not (sessions_dir / "abc_123").exists()

    def test_delete_unknown(self, client):
        assert client.delete("/sessions/nobody", headers=AUTH).status_code == 404

    def test_send_requires_connected(self, client):
        client.post("/sessions", json={"session_id": "abc_123"}, headers=AUTH)

        response = client.post(
            "/sessions/abc_123/send", json={"to": "573001234567", "message": "hi"}, headers=AUTH
        )

        assert response.status_code == 409
        assert response.json()["status"] == "initializing"

    def test_send_message(self, client, factory):
        connect(client, factory)

        response = client.post(
            "/sessions/abc_123/send", json={"to": "573001234567", "message": "hi"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["message"]["peer"] == "573001234567@c.us"
        assert factory.clients["abc_123"].sent == [("573001234567@c.us", "hi")]

    def test_send_bad_number(self, client, factory):
        connect(client, factory)
        response = client.post(
            "/sessions/abc_123/send", json={"to": "12", "message": "hi"}, headers=AUTH
        )
        assert response.status_code == 400

    def test_send_failure_is_502(self, client, factory):
        connect(client, factory)
        factory.clients["abc_123"].send_error = RuntimeError("boom")

        response = client.post(
            "/sessions/abc_123/send", json={"to": "573001234567", "message": "hi"}, headers=AUTH
        )

        assert response.status_code == 502

    def test_chats(self, client, factory):
        connect(client, factory)

        chats = client.get("/sessions/abc_123/chats", headers=AUTH).json()
        assert chats["count"] == 2

        chat = client.get("/sessions/abc_123/chats/120363000000@g.us", headers=AUTH).json()
        assert chat["chat"]["is_group"] is True

        missing = client.get("/sessions/abc_123/chats/1@c.us", headers=AUTH)
        assert missing.status_code == 404


class TestRecovery:
    def test_stats_and_run(self, client, sessions_dir):
        make_profile(sessions_dir, "saved_1")
        (sessions_dir / "junk").mkdir()

        stats = client.get("/recovery/stats", headers=AUTH).json()
        assert stats["need_recovery"] == 1
        assert stats["invalid"] == 1

        report = client.post("/recovery/run", headers=AUTH).json()
        assert report["recovered"] == 1
        assert client.get("/api/status/saved_1").status_code == 200

    def test_clean(self, client, sessions_dir):
        (sessions_dir / "junk").mkdir()

        response = client.post("/recovery/clean", headers=AUTH)

        assert response.json()["removed"] == 1
        assert not (sessions_dir / "junk").exists()

    def test_recover_one(self, client, sessions_dir):
        make_profile(sessions_dir, "saved_1")

        ok = client.post("/recovery/saved_1", headers=AUTH)
        assert ok.status_code == 200
        assert ok.json()["reason"] == "recovered"

        (sessions_dir / "junk").mkdir()
        bad = client.post("/recovery/junk", headers=AUTH)
        assert bad.status_code == 422
        assert bad.json()["reason"] == "invalid_data"


class TestResources:
    def test_get_resources(self, client):
        body = client.get("/resources", headers=AUTH).json()

        assert body["success"] is True
        assert body["limits"]["max_total_sessions"] == 50
        assert body["timer"]["running"] is False

    def test_check_resources(self, client, memory):
        memory.rss_mb = 700
        body = client.post("/resources/check", headers=AUTH).json()
        assert body["status"] == "warning"

    def test_update_limits(self, client):
        response = client.put(
            "/resources/limits", json={"max_total_sessions": 20}, headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["limits"]["max_total_sessions"] == 20

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"memory_critical_mb": 10},
            {"max_total_sessions": -1},
        ],
    )
    def test_update_limits_rejects(self, client, body):
        response = client.put("/resources/limits", json=body, headers=AUTH)
        assert response.status_code == 400

    def test_trim(self, client):
        body = client.post("/resources/trim", headers=AUTH).json()
        assert body["removed"] == 0


def test_shutdown_drains_sessions(app, factory, sessions_dir):
    with TestClient(app) as test_client:
        test_client.post("/sessions", json={"session_id": "one"}, headers=AUTH)
        test_client.post("/sessions", json={"session_id": "two"}, headers=AUTH)

    assert app.state.store.count == 0
    assert all(c.stopped for c in factory.clients.values())
    assert (sessions_dir / "one").is_dir()
