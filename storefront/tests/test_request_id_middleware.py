import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from storefront.core.logging import get_request_id, request_id_ctx_var
from storefront.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {"state": getattr(request.state, "request_id", None), "context": get_request_id()}

    return app


def test_generates_request_id_when_missing():
    resp = TestClient(_make_app()).get("/")
    assert resp.status_code == 200
    rid = resp.headers.get("x-request-id")
    assert rid
    assert resp.json() == {"state": rid, "context": rid}


def test_echoes_provided_request_id():
    resp = TestClient(_make_app()).get("/", headers={"X-Request-Id": "rid-upstream-7"})
    assert resp.headers.get("x-request-id") == "rid-upstream-7"
    assert resp.json()["context"] == "rid-upstream-7"


def test_context_reset_after_request():
    TestClient(_make_app()).get("/", headers={"X-Request-Id": "rid-once"})
    assert request_id_ctx_var.get() is None


def test_completion_log_has_path_and_bucket(caplog):
    with caplog.at_level(logging.INFO, logger="storefront"):
        TestClient(_make_app()).get("/", headers={"X-Request-Id": "rid-log"})
    record = next(r for r in caplog.records if r.getMessage() == "request.complete")
    assert record.request_id == "rid-log"
    assert record.path == "/"
    assert record.status == 200
    assert record.latency_bucket in {"<10ms", "10-100ms", "100-500ms", "500-1000ms", ">=1000ms"}
