"""
Tests for the HTTP layer. No database: state, store and cooldowns are
swapped through FastAPI dependency overrides, and the lifespan is not run.
"""

import pytest
from fastapi.testclient import TestClient

import streetlights.dependencies as deps
from conftest import FakeStore, make_official, make_report
from streetlights.main import app
from streetlights.services.cooldown import AnonymousCooldowns
from streetlights.services.state import EngineState

USER = {"user_id": "u1", "email": "jane@mail.com", "name": "Jane"}


@pytest.fixture
def engine():
    st = EngineState()
    st.upsert_official(make_official("ol-1"))
    st.upsert_official(make_official("ol-2", 41.9, -80.7))
    return st


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def client(engine, fake_store, monkeypatch):
    monkeypatch.setattr(deps, "ADMIN_TOKEN", "")
    monkeypatch.setattr(deps, "REQUIRE_USER_HEADER", False)
    cooldowns = AnonymousCooldowns(path=None)
    app.dependency_overrides[deps.get_state] = lambda: engine
    app.dependency_overrides[deps.get_store] = lambda: fake_store
    app.dependency_overrides[deps.get_cooldowns] = lambda: cooldowns
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestMap:
    def test_health(self, client):
        assert client.get("/health").json()["ok"] is True

    def test_map_lists_lights(self, client, engine):
        for i in range(5):
            engine.add_report(make_report(f"r{i}", ts=100 + i, light_id="ol-1", reporter_email=f"u{i}@mail.com"))
        res = client.get("/map")
        assert res.status_code == 200
        assert res.headers["cache-control"] == "no-store"
        lights = {l["light_id"]: l for l in res.json()["lights"]}
        assert lights["ol-1"]["label"] == "Likely Out"
        assert lights["ol-2"]["label"] == "Operational"
        assert res.json()["counts"]["open"] == 1

    def test_map_viewer_muted(self, client, engine):
        engine.add_report(make_report("r1", ts=100, light_id="ol-1", reporter_email="me@mail.com"))
        lights = {l["light_id"]: l for l in client.get("/map", params={"email": "ME@mail.com"}).json()["lights"]}
        assert lights["ol-1"]["color"] == "#f1c40f"
        assert lights["ol-1"]["mine_only"] is True

    def test_light_detail(self, client, engine):
        engine.add_report(make_report("r1", ts=100, light_id="ol-1"))
        body = client.get("/lights/ol-1").json()
        assert body["is_official"] is True
        assert body["status"]["since_fix_count"] == 1
        assert [h["kind"] for h in body["history"]] == ["report"]

    def test_light_not_found(self, client):
        assert client.get("/lights/nope").status_code == 404


class TestReport:
    def test_report_ok_then_cooldown(self, client):
        payload = {"lat": 41.8651, "lng": -80.7898, "light_id": "ol-1", "type": "out", "session": USER}
        res = client.post("/report", json=payload)
        assert res.status_code == 200
        assert res.json()["light_id"] == "ol-1"
        again = client.post("/report", json=payload)
        assert again.status_code == 409

    def test_guest_without_contact(self, client, fake_store):
        res = client.post("/report", json={"lat": 41.8651, "lng": -80.7898, "light_id": "ol-1"})
        assert res.status_code == 428
        assert res.json()["detail"] == "contact_required"
        assert fake_store.calls == []

    def test_other_without_note(self, client):
        res = client.post("/report", json={"lat": 41.8651, "lng": -80.7898, "type": "other", "session": USER})
        assert res.status_code == 422

    def test_enum_fallback(self, client, fake_store):
        fake_store.reject_types = {"downed_pole"}
        res = client.post("/report", json={
            "lat": 41.8651, "lng": -80.7898, "light_id": "ol-1", "type": "downed_pole", "session": USER,
        })
        assert res.status_code == 200
        assert res.json()["report_type"] == "pole_down"

    def test_store_down(self, client, fake_store):
        fake_store.fail_lights = {"ol-1"}
        res = client.post("/report", json={"lat": 41.8651, "lng": -80.7898, "light_id": "ol-1", "session": USER})
        assert res.status_code == 503

    def test_bulk(self, client):
        res = client.post("/report/bulk", json={"light_ids": ["ol-1", "ol-2", "nope"], "session": USER})
        assert res.status_code == 200
        assert (res.json()["ok"], res.json()["failed"]) == (2, 1)

    def test_bulk_empty(self, client):
        assert client.post("/report/bulk", json={"light_ids": [], "session": USER}).status_code == 400

    def test_session_checked_against_forwarded_user(self, client, fake_store):
        payload = {"lat": 41.8651, "lng": -80.7898, "light_id": "ol-1", "session": USER}
        res = client.post("/report", json=payload, headers={"x-user-id": "someone-else"})
        assert res.status_code == 401
        assert fake_store.calls == []
        assert client.post("/report", json=payload, headers={"x-user-id": "u1"}).status_code == 200

    def test_forwarded_user_required(self, client, monkeypatch):
        monkeypatch.setattr(deps, "REQUIRE_USER_HEADER", True)
        payload = {"lat": 41.8651, "lng": -80.7898, "light_id": "ol-1", "session": USER}
        assert client.post("/report", json=payload).status_code == 401
        guest = {"name": "Bob", "email": "bob@mail.com"}
        res = client.post("/report", json={"lat": 41.8651, "lng": -80.7898, "light_id": "ol-2", "guest": guest})
        assert res.status_code == 200

    def test_working(self, client):
        guest = {"name": "Bob", "email": "bob@mail.com", "phone": "4405550100"}
        res = client.post("/lights/ol-1/working", json={"guest": guest})
        assert res.status_code == 200
        assert res.json()["report_type"] == "working"


class TestFeed:
    def test_single_and_replay(self, client, engine):
        ev = {
            "table": "reports",
            "event": "insert",
            "new": {"id": "f1", "lat": 41.8651, "lng": -80.7898, "report_type": "out",
                    "created_at": "2024-05-01T12:00:00Z", "light_id": "ol-1"},
        }
        assert client.post("/feed", json=ev).json()["changed"] == 1
        assert client.post("/feed", json=[ev, ev]).json() == {"ok": True, "received": 2, "changed": 0}
        assert "f1" in engine.reports

    def test_token_required(self, client, engine, monkeypatch):
        monkeypatch.setattr(deps, "ADMIN_TOKEN", "secret")
        ev = {"table": "official_lights", "event": "delete", "old": {"id": "ol-1"}}
        assert client.post("/feed", json=ev).status_code == 401
        assert "ol-1" in engine.officials
        res = client.post("/feed", json=ev, headers={"x-admin-token": "secret"})
        assert res.json()["changed"] == 1
        assert "ol-1" not in engine.officials


class TestAdmin:
    def test_fix_then_operational(self, client, engine):
        engine.add_report(make_report("r1", ts=100, light_id="ol-1"))
        res = client.post("/admin/lights/ol-1/fix")
        assert res.status_code == 200
        assert res.json()["light_ids"] == ["ol-1"]
        assert client.get("/lights/ol-1").json()["status"]["label"] == "Operational"

        assert client.post("/admin/lights/ol-1/reopen").status_code == 200
        assert client.get("/lights/ol-1").json()["status"]["label"] == "Reported"

    def test_token_required(self, client, monkeypatch):
        monkeypatch.setattr(deps, "ADMIN_TOKEN", "secret")
        assert client.post("/admin/lights/ol-1/fix").status_code == 401
        assert client.post("/admin/lights/ol-1/fix", headers={"x-admin-token": "nope"}).status_code == 401
        assert client.post("/admin/lights/ol-1/fix", headers={"x-admin-token": "secret"}).status_code == 200

    def test_admin_sees_tier(self, client, engine, monkeypatch):
        monkeypatch.setattr(deps, "ADMIN_TOKEN", "secret")
        engine.add_report(make_report("r1", ts=100, light_id="ol-1", reporter_email="me@mail.com"))
        res = client.get("/map", params={"email": "me@mail.com"}, headers={"x-admin-token": "secret"})
        lights = {l["light_id"]: l for l in res.json()["lights"]}
        assert lights["ol-1"]["color"] == "#fbc02d"

    def test_add_and_delete_official(self, client, engine):
        res = client.post("/admin/official_lights", json={"points": [{"lat": 41.95, "lng": -80.65}]})
        assert res.status_code == 200
        created = res.json()["created"]
        assert len(created) == 1
        assert created[0]["id"] in engine.officials

        assert client.delete(f"/admin/official_lights/{created[0]['id']}").status_code == 200
        assert created[0]["id"] not in engine.officials
        assert client.delete("/admin/official_lights/nope").status_code == 404
