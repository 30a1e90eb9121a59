"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront.core.config import Settings
from storefront.core.errors import (
    AppError,
    ConflictError,
    PricingFaultError,
    app_error_handler,
    unhandled_exception_handler,
)
from storefront.core.middleware.request_id import RequestIdMiddleware
from storefront.main import create_app
from storefront.tests.mocks import FakeBackendProvider


def make_client():
    cfg = Settings(ENV="test", AWARD_PENDING_ENABLED=False)
    return TestClient(create_app(cfg, provider=FakeBackendProvider()), raise_server_exceptions=False)


def test_validation_error_has_standard_shape():
    client = make_client()
    resp = client.post("/v1/profiles/profile1/checkout-return", params={"ref": "x"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_not_found_normalized():
    resp = make_client().get("/v1/profiles/missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_unauthenticated_account_is_401():
    resp = make_client().get("/v1/account")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"


def _error_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("busy")

    @app.get("/fault")
    async def fault():
        raise PricingFaultError("amount below minimum")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


def test_app_error_status_and_code():
    client = _error_app()
    assert client.get("/conflict").json()["error"]["code"] == "conflict"
    fault = client.get("/fault")
    assert fault.status_code == 500
    assert fault.json()["error"]["code"] == "pricing_fault"


def test_unhandled_error_hides_details():
    resp = _error_app().get("/boom", headers={"X-Request-Id": "rid-boom"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == {"code": "internal_error", "message": "Unexpected error", "request_id": "rid-boom"}
    assert "secret" not in resp.text
