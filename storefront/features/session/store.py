"""
Credential storage for the browser session.

A Credential is the access token (opaque to us, usually a JWT), an optional
refresh token and the viewer's identity. It is created on a verified checkout
return or a login, and cleared on logout or account deletion.

Two stores share the CredentialStore protocol:
- CookieCredentialStore: httponly cookies on the request/response pair
- MemoryCredentialStore: process memory, for long-lived page hosts and tests
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import jwt
from starlette.requests import Request
from starlette.responses import Response

from storefront.core.config import Settings, settings as default_settings
from storefront.models.entitlement import IssuedCredential

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "wmf_access_token"
REFRESH_TOKEN_COOKIE = "wmf_refresh_token"
USER_COOKIE = "wmf_user"


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_issued(cls, issued: IssuedCredential) -> "Credential":
        return cls(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            user_id=issued.user.id,
            email=issued.user.email,
        )

    def claims(self) -> Dict[str, Any]:
        """Unverified JWT claims. The backend verifies the signature; we only read."""
        try:
            return jwt.decode(
                self.access_token,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.PyJWTError:
            return {}

    @property
    def customer_email(self) -> Optional[str]:
        return self.email or self.claims().get("email")

    def expires_at(self) -> Optional[datetime]:
        exp = self.claims().get("exp")
        if exp is None:
            return None
        try:
            return datetime.fromtimestamp(int(exp), timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when the token carries an exp claim that has passed. Opaque tokens never expire here."""
        expires_at = self.expires_at()
        if expires_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return expires_at <= current

    def with_access_token(self, access_token: str, user_id: Optional[str] = None, email: Optional[str] = None) -> "Credential":
        return replace(
            self,
            access_token=access_token,
            user_id=user_id or self.user_id,
            email=email or self.email,
        )


class CredentialStore(Protocol):
    """Where the browser session's credential lives."""

    def load(self) -> Optional[Credential]:
        ...

    def save(self, credential: Credential) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryCredentialStore:
    """Credential held in process memory."""

    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    def load(self) -> Optional[Credential]:
        return self._credential

    def save(self, credential: Credential) -> None:
        self._credential = credential

    def clear(self) -> None:
        self._credential = None


def _encode_user(user_id: Optional[str], email: Optional[str]) -> str:
    raw = json.dumps({"id": user_id, "email": email}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def _decode_user(value: Optional[str]) -> Dict[str, Optional[str]]:
    if not value:
        return {}
    try:
        padded = value + "=" * (-len(value) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError):
        logger.info("[session] ignoring unreadable user cookie")
        return {}
    return data if isinstance(data, dict) else {}


class CookieCredentialStore:
    """Credential persisted in httponly cookies scoped to the storefront origin."""

    def __init__(self, request: Request, response: Response, settings: Optional[Settings] = None):
        self.request = request
        self.response = response
        self.settings = settings or default_settings
        # Writes made during this request win over the incoming cookies
        self._pending: Optional[Credential] = None
        self._cleared = False

    def load(self) -> Optional[Credential]:
        if self._cleared:
            return None
        if self._pending is not None:
            return self._pending

        access_token = self.request.cookies.get(ACCESS_TOKEN_COOKIE)
        if not access_token:
            return None
        user = _decode_user(self.request.cookies.get(USER_COOKIE))
        return Credential(
            access_token=access_token,
            refresh_token=self.request.cookies.get(REFRESH_TOKEN_COOKIE),
            user_id=user.get("id"),
            email=user.get("email"),
        )

    def _set(self, key: str, value: str) -> None:
        self.response.set_cookie(
            key,
            value,
            max_age=self.settings.COOKIE_MAX_AGE_SECONDS,
            httponly=True,
            secure=self.settings.COOKIE_SECURE,
            samesite="lax",
            path="/",
        )

    def save(self, credential: Credential) -> None:
        self._set(ACCESS_TOKEN_COOKIE, credential.access_token)
        if credential.refresh_token:
            self._set(REFRESH_TOKEN_COOKIE, credential.refresh_token)
        self._set(USER_COOKIE, _encode_user(credential.user_id, credential.email))
        self._pending = credential
        self._cleared = False

    def clear(self) -> None:
        for key in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, USER_COOKIE):
            self.response.delete_cookie(key, path="/")
        self._pending = None
        self._cleared = True
