"""Tests for credential storage and access token refresh."""

from datetime import timedelta

import pytest
from fastapi import FastAPI, Request, Response
from fastapi.testclient import TestClient

from storefront.core.config import Settings
from storefront.features.billing.provider import UpstreamError
from storefront.features.session.refresh import ensure_fresh_credential
from storefront.features.session.store import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    USER_COOKIE,
    CookieCredentialStore,
    Credential,
    MemoryCredentialStore,
)
from storefront.tests.mocks import USER, FakeBackendProvider, make_credential, make_jwt


def test_opaque_token_never_expires():
    credential = Credential(access_token="opaque-token")
    assert credential.claims() == {}
    assert credential.is_expired() is False


def test_jwt_expiry_and_email_claim():
    fresh = Credential(access_token=make_jwt())
    stale = Credential(access_token=make_jwt(exp_delta=timedelta(seconds=-1)))
    assert fresh.is_expired() is False
    assert stale.is_expired() is True
    assert fresh.customer_email == USER.email


def test_cookie_store_round_trip():
    settings = Settings(ENV="test", COOKIE_SECURE=False)
    app = FastAPI()

    @app.post("/save")
    def save(request: Request, response: Response):
        store = CookieCredentialStore(request, response, settings)
        store.save(Credential(access_token="at-1", refresh_token="rt-1", user_id="user-1", email="fan@example.com"))
        return {"loaded": store.load().access_token}

    @app.get("/load")
    def load(request: Request, response: Response):
        credential = CookieCredentialStore(request, response, settings).load()
        return {
            "access_token": credential.access_token if credential else None,
            "refresh_token": credential.refresh_token if credential else None,
            "user_id": credential.user_id if credential else None,
            "email": credential.email if credential else None,
        }

    @app.post("/clear")
    def clear(request: Request, response: Response):
        store = CookieCredentialStore(request, response, settings)
        store.clear()
        return {"loaded": store.load()}

    client = TestClient(app)
    saved = client.post("/save")
    assert saved.json() == {"loaded": "at-1"}
    set_cookie = ",".join(saved.headers.get_list("set-cookie"))
    assert ACCESS_TOKEN_COOKIE in set_cookie
    assert REFRESH_TOKEN_COOKIE in set_cookie
    assert USER_COOKIE in set_cookie
    assert "httponly" in set_cookie.lower()
    assert "samesite=lax" in set_cookie.lower()

    loaded = client.get("/load").json()
    assert loaded == {"access_token": "at-1", "refresh_token": "rt-1", "user_id": "user-1", "email": "fan@example.com"}

    assert client.post("/clear").json() == {"loaded": None}
    assert client.get("/load").json()["access_token"] is None


@pytest.mark.asyncio
async def test_fresh_credential_is_returned_untouched():
    provider = FakeBackendProvider()
    credential = make_credential()
    store = MemoryCredentialStore(credential)
    assert await ensure_fresh_credential(store, provider) is credential
    assert provider.calls == []


@pytest.mark.asyncio
async def test_expired_credential_refreshed_once():
    provider = FakeBackendProvider()
    store = MemoryCredentialStore(make_credential(access_token=make_jwt(exp_delta=timedelta(minutes=-1))))

    refreshed = await ensure_fresh_credential(store, provider)

    assert refreshed is not None
    assert refreshed.is_expired() is False
    assert refreshed.refresh_token == "refresh-1"
    assert store.load() is refreshed
    assert provider.count("refresh_token") == 1


@pytest.mark.asyncio
async def test_failed_refresh_clears_credential():
    provider = FakeBackendProvider()
    provider.fail["refresh_token"] = UpstreamError("revoked", status_code=401)
    store = MemoryCredentialStore(make_credential(access_token=make_jwt(exp_delta=timedelta(minutes=-1))))

    assert await ensure_fresh_credential(store, provider) is None
    assert store.load() is None


@pytest.mark.asyncio
async def test_expired_without_refresh_token_clears_credential():
    provider = FakeBackendProvider()
    store = MemoryCredentialStore(
        make_credential(access_token=make_jwt(exp_delta=timedelta(minutes=-1)), refresh_token=None)
    )
    assert await ensure_fresh_credential(store, provider) is None
    assert provider.calls == []
