from fastapi.testclient import TestClient

import storefront.api.health as health_api
from storefront.core.config import Settings
from storefront.main import create_app
from storefront.tests.mocks import FakeBackendProvider


def make_client():
    cfg = Settings(ENV="test", ENTITLEMENT_SOURCE="fixture", ENTITLEMENT_FIXTURE="membership")
    return TestClient(create_app(cfg, provider=FakeBackendProvider()))


def test_healthz_reports_entitlement_source():
    resp = make_client().get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "entitlement_source": "fixture"}


def test_readyz_memory_ledger(monkeypatch):
    monkeypatch.setattr(health_api, "database_configured", lambda: False)
    resp = make_client().get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "ledger": "memory"}


def test_readyz_ok_with_mocked_db(monkeypatch):
    monkeypatch.setattr(health_api, "database_configured", lambda: True)
    monkeypatch.setattr(health_api, "check_connection", lambda: True)
    resp = make_client().get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "ledger": "database"}


def test_readyz_handles_db_down(monkeypatch):
    monkeypatch.setattr(health_api, "database_configured", lambda: True)
    monkeypatch.setattr(health_api, "check_connection", lambda: False)

    resp = make_client().get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "database" in body.get("detail", "")
