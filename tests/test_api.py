from starlette.testclient import TestClient

from pairsense.api.app import app
from pairsense.config.settings import get_settings
from pairsense.domain.models import MulticastResult, TokenResult
from pairsense.ingestion.weather_client import WeatherLookupError
from pairsense.store.base import StoreError
from pairsense.store.memory import InMemoryDocumentStore


class _StubWeather:
    def lookup(self, *, lat: float, lon: float):
        # Keep API tests offline; a lookup failure is a soft failure in the pipeline.
        raise WeatherLookupError("offline")


class _StubPushProvider:
    def __init__(self):
        self.calls = []

    def send_multicast(self, tokens, payload):
        self.calls.append((list(tokens), payload))
        return MulticastResult(success_count=len(tokens), responses=[TokenResult(token=t, success=True) for t in tokens])


class _DownStore(InMemoryDocumentStore):
    def run_in_transaction(self, fn):
        raise StoreError("backend unavailable")


def _patch_services(monkeypatch, store=None):
    # Patch the cached services factory so API tests stay offline.
    import pairsense.api.routes as routes

    store = store or InMemoryDocumentStore()
    provider = _StubPushProvider()
    services = routes.build_services(get_settings(), store, _StubWeather(), provider)
    monkeypatch.setattr(routes, "_services", lambda: services)
    return store, provider


def test_invite_join_and_read_pair(monkeypatch):
    store, _ = _patch_services(monkeypatch)

    with TestClient(app) as c:
        invite = c.post("/api/pairs/invite", json={"uid": "alice"})
        assert invite.status_code == 200
        code = invite.json()["pair_id"]
        assert len(code) == 6
        assert invite.json()["status"] == "waiting"

        joined = c.post("/api/pairs/join", json={"uid": "bob", "code": code})
        assert joined.status_code == 200
        assert joined.json()["status"] == "active"

        pair = c.get(f"/api/pairs/{code}")
        assert pair.status_code == 200
        assert pair.json()["ownerUid"] == "alice"
        assert pair.json()["partnerUid"] == "bob"
        assert pair.json()["id"] == code

    assert store.get("users", "bob")["pairId"] == code


def test_pairing_errors_map_to_http_status(monkeypatch):
    _patch_services(monkeypatch)

    with TestClient(app) as c:
        code = c.post("/api/pairs/invite", json={"uid": "alice"}).json()["pair_id"]

        missing = c.post("/api/pairs/join", json={"uid": "bob", "code": "000000"})
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "not_found"

        own = c.post("/api/pairs/join", json={"uid": "alice", "code": code})
        assert own.status_code == 400
        assert own.json()["detail"]["code"] == "self_join"

        assert c.post("/api/pairs/join", json={"uid": "bob", "code": code}).status_code == 200
        taken = c.post("/api/pairs/join", json={"uid": "carol", "code": code})
        assert taken.status_code == 409
        assert taken.json()["detail"]["code"] == "already_taken"

        assert c.get("/api/pairs/999999").status_code == 404


def test_store_failure_is_503(monkeypatch):
    _patch_services(monkeypatch, store=_DownStore())

    with TestClient(app) as c:
        resp = c.post("/api/pairs/invite", json={"uid": "alice"})

    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "STORE_UNAVAILABLE"


def test_user_written_trigger_runs_pipeline(monkeypatch):
    store, provider = _patch_services(monkeypatch)
    store.set("pairs", "123456", {"ownerUid": "alice", "partnerUid": "bob", "status": "active"})
    store.set("users", "bob", {"displayName": "Bob", "notificationTokens": {"bob-phone": True}})

    event = {
        "uid": "alice",
        "before": {"displayName": "Alice", "pairId": "123456", "lastOpenedAt": "2026-01-05T09:00:00Z"},
        "after": {
            "displayName": "Alice",
            "pairId": "123456",
            "lastOpenedAt": "2026-01-05T09:05:00Z",
            "location": {"lat": 35.68, "lng": 139.76},
        },
    }

    with TestClient(app) as c:
        resp = c.post("/api/triggers/user-written", json=event)

    assert resp.status_code == 200
    data = resp.json()
    assert data["uid"] == "alice"
    assert data["weather"]["error"] == "offline"
    assert data["notification"]["ran"] is True
    assert data["notification"]["details"]["partnerUid"] == "bob"
    assert len(provider.calls) == 1


def test_settings_and_health(monkeypatch):
    _patch_services(monkeypatch)

    with TestClient(app) as c:
        health = c.get("/api/health")
        settings = c.get("/api/settings")

    assert health.json() == {"status": "ok"}
    body = settings.json()
    assert body["options"]["notificationBatchSize"] == 500
    assert "api_key" not in str(body)
