"""
storefront/features/checkout/returns.py

Return URL conventions for the external checkout.

Success and cancellation come back as query indicators on the profile URL:
    ?membership=success&session_id=cs_...
    ?content_purchase=success&video_id=video3&session_id=cs_...
    ?membership=canceled | ?content_purchase=canceled

The indicators are consumed once and stripped from the canonical URL.
"""

from dataclasses import dataclass
from typing import Literal, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

ReturnKind = Literal["membership", "content"]
ReturnStatus = Literal["success", "canceled"]

RETURN_PARAMS = frozenset({"membership", "content_purchase", "session_id", "video_id"})
CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class CheckoutReturn:
    kind: ReturnKind
    status: ReturnStatus
    session_id: Optional[str] = None
    video_id: Optional[str] = None

    @property
    def replay_key(self) -> Optional[str]:
        if not self.session_id:
            return None
        return f"return:{self.session_id}"


def parse_return(params: Mapping[str, Optional[str]]) -> Optional[CheckoutReturn]:
    """Read the return indicator from query params. None when there is none."""
    for key, kind in (("content_purchase", "content"), ("membership", "membership")):
        value = (params.get(key) or "").strip().lower()
        if value in ("success", "canceled", "cancelled"):
            return CheckoutReturn(
                kind=kind,
                status="success" if value == "success" else "canceled",
                session_id=params.get("session_id") or None,
                video_id=params.get("video_id") or None,
            )
    return None


def strip_return_params(url: str) -> str:
    """Drop the return indicators, keeping any unrelated query params."""
    parts = urlsplit(url)
    kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in RETURN_PARAMS]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


def profile_url(app_url: str, profile_id: str) -> str:
    return f"{app_url.rstrip('/')}/{profile_id}"


def content_return_urls(app_url: str, profile_id: str, video_id: str) -> tuple:
    base = profile_url(app_url, profile_id)
    query = urlencode({"content_purchase": "success", "video_id": video_id})
    # The placeholder is filled in by the payment provider and must stay unescaped
    success = f"{base}?{query}&session_id={CHECKOUT_SESSION_PLACEHOLDER}"
    cancel = f"{base}?content_purchase=canceled"
    return success, cancel


def membership_return_urls(app_url: str, profile_id: str) -> tuple:
    base = profile_url(app_url, profile_id)
    success = f"{base}?membership=success&session_id={CHECKOUT_SESSION_PLACEHOLDER}"
    cancel = f"{base}?membership=canceled"
    return success, cancel
