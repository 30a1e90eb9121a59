"""Tests for structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from storefront.core.config import Settings
from storefront.core.logging import JsonFormatter, log_event, request_id_ctx_var
from storefront.main import create_app
from storefront.tests.mocks import FakeBackendProvider


def make_client():
    return TestClient(create_app(Settings(ENV="test"), provider=FakeBackendProvider()))


def test_request_id_in_response_and_logs(caplog):
    client = make_client()
    with caplog.at_level(logging.INFO, logger="storefront"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_request_id_in_error_response():
    response = make_client().get("/v1/profiles/non-existent")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 404
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_log_event_uses_context_request_id(caplog):
    token = request_id_ctx_var.set("rid-ctx")
    try:
        with caplog.at_level(logging.INFO, logger="storefront"):
            log_event("info", "checkout.test", request_id=None, profile_id="profile1", extra={"note": "x" * 600})
    finally:
        request_id_ctx_var.reset(token)

    record = next(r for r in caplog.records if r.getMessage() == "checkout.test")
    assert record.request_id == "rid-ctx"
    assert record.profile_id == "profile1"
    assert record.note.endswith("...<truncated>")


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("storefront", logging.INFO, __file__, 1, "checkout.return.ok", None, None)
    record.request_id = "rid-1"
    record.profile_id = "profile1"
    record.video_id = "video3"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "checkout.return.ok"
    assert payload["request_id"] == "rid-1"
    assert payload["profile_id"] == "profile1"
    assert payload["video_id"] == "video3"
