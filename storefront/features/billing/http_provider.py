"""
HTTP implementation of BackendProvider.

Talks to the backend of record over httpx. Responses use the envelope
{"success": bool, "data": {...}, "message"?: str}.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from storefront.core.errors import InvalidTokenUnlockError
from storefront.core.logging import get_request_id
from storefront.features.billing.provider import (
    FREE_UNLOCK_TOKEN_COST,
    UpstreamError,
)
from storefront.models.entitlement import IssuedCredential, RefreshedCredential, VerifiedAccount

logger = logging.getLogger(__name__)


class HttpBackendProvider:
    """BackendProvider over a shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, internal_api_key: Optional[str] = None):
        """
        Args:
            client: AsyncClient with base_url pointing at the backend (API_URL)
            internal_api_key: Sent as x-api-key on internal-only endpoints
        """
        self.client = client
        self.internal_api_key = internal_api_key

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        rid = get_request_id()
        if rid:
            headers["x-request-id"] = rid
        if extra:
            headers.update(extra)
        return headers

    async def _post(self, path: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            return await self.client.post(path, json=payload, headers=self._headers(headers))
        except httpx.HTTPError as e:
            raise UpstreamError(f"{path} unreachable: {e.__class__.__name__}", endpoint=path)

    @staticmethod
    def _error_message(response: httpx.Response, fallback: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return fallback
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or fallback
        return fallback

    async def _call(self, path: str, payload: Dict[str, Any], *, fallback: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST and return the envelope's data, raising UpstreamError on any failure."""
        response = await self._post(path, payload, headers)
        if response.status_code >= 400:
            raise UpstreamError(
                self._error_message(response, fallback),
                status_code=response.status_code,
                endpoint=path,
            )
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError(f"{fallback}: invalid JSON", status_code=response.status_code, endpoint=path)
        if not isinstance(body, dict) or body.get("success") is False:
            message = body.get("message") if isinstance(body, dict) else None
            raise UpstreamError(message or fallback, status_code=response.status_code, endpoint=path)
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def verify_token(self, token: str) -> VerifiedAccount:
        path = "/auth/verify-token"
        response = await self._post(path, {"token": token})
        if response.status_code in (401, 403):
            return VerifiedAccount(valid=False, reason="Token is invalid")
        if response.status_code >= 400:
            raise UpstreamError(
                self._error_message(response, "Failed to verify token"),
                status_code=response.status_code,
                endpoint=path,
            )
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError("Failed to verify token: invalid JSON", status_code=response.status_code, endpoint=path)

        if not isinstance(body, dict):
            raise UpstreamError("Failed to verify token: unexpected body", status_code=response.status_code, endpoint=path)

        data = body.get("data")
        if not body.get("success") or not isinstance(data, dict) or not data.get("valid"):
            reason = data.get("reason") if isinstance(data, dict) else None
            return VerifiedAccount(valid=False, reason=reason or "Token is invalid")
        return VerifiedAccount.model_validate(data)

    async def refresh_token(self, refresh_token: str) -> RefreshedCredential:
        data = await self._call(
            "/auth/refresh-token",
            {"refreshToken": refresh_token},
            fallback="Failed to refresh token",
        )
        return RefreshedCredential.model_validate(data)

    async def verify_checkout_session(self, session_id: str, profile_id: str) -> IssuedCredential:
        data = await self._call(
            "/auth/verify-session",
            {"sessionId": session_id, "profileId": profile_id},
            fallback="Failed to verify session",
        )
        return IssuedCredential.model_validate(data)

    @staticmethod
    def _url_from(data: Dict[str, Any], path: str, fallback: str) -> str:
        url = data.get("url")
        if not url:
            raise UpstreamError(fallback, endpoint=path)
        return url

    async def create_membership_session(
        self,
        profile_id: str,
        price_amount: int,
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
        display_name: Optional[str] = None,
        debug_secret: Optional[str] = None,
    ) -> str:
        path = "/stripe/create-checkout-session"
        payload: Dict[str, Any] = {
            "profileId": profile_id,
            "priceAmount": price_amount,
            "customerEmail": customer_email,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "displayName": display_name,
        }
        if debug_secret:
            payload["debugSecret"] = debug_secret
        data = await self._call(path, payload, fallback="Failed to create checkout session")
        return self._url_from(data, path, "No checkout URL received")

    async def create_content_checkout_session(
        self,
        profile_id: str,
        video_id: str,
        amount_due: int,
        tokens_to_use: int,
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
        video_title: Optional[str] = None,
        creator_display_name: Optional[str] = None,
        debug_secret: Optional[str] = None,
    ) -> str:
        path = "/stripe/create-content-checkout-session"
        payload: Dict[str, Any] = {
            "profileId": profile_id,
            "videoId": video_id,
            "amountDue": amount_due,
            "tokensToUse": tokens_to_use,
            "customerEmail": customer_email,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "videoTitle": video_title,
            "creatorDisplayName": creator_display_name,
        }
        if debug_secret:
            payload["debugSecret"] = debug_secret
        data = await self._call(path, payload, fallback="Failed to create content checkout session")
        return self._url_from(data, path, "No checkout URL received")

    async def create_portal_session(self, customer_email: str, return_url: str) -> str:
        path = "/stripe/create-portal-session"
        data = await self._call(
            path,
            {"customerEmail": customer_email, "returnUrl": return_url},
            fallback="Failed to create portal session",
        )
        return self._url_from(data, path, "No portal URL received")

    async def unlock_content_with_tokens(
        self,
        profile_id: str,
        video_id: str,
        customer_email: str,
        tokens_to_use: int = FREE_UNLOCK_TOKEN_COST,
    ) -> bool:
        if tokens_to_use != FREE_UNLOCK_TOKEN_COST:
            raise InvalidTokenUnlockError("Must use exactly 2 tokens for free unlock")
        await self._call(
            "/stripe/unlock-content-with-tokens",
            {
                "profileId": profile_id,
                "videoId": video_id,
                "customerEmail": customer_email,
                "tokensToUse": tokens_to_use,
            },
            fallback="Failed to unlock content with tokens",
        )
        return True

    async def create_free_membership(self, profile_id: str, token: str) -> bool:
        await self._call(
            "/auth/create-free-membership",
            {"profileId": profile_id, "token": token},
            fallback="Failed to create free membership",
        )
        return True

    async def award_pending_tokens(self) -> int:
        headers = {"x-api-key": self.internal_api_key} if self.internal_api_key else None
        data = await self._call(
            "/purchase-tokens/award-pending",
            {},
            fallback="Failed to award pending tokens",
            headers=headers,
        )
        return int(data.get("awardedCount") or 0)

    async def send_magic_link(self, email: str, profile_id: str) -> None:
        await self._call(
            "/auth/send-magic-link",
            {"email": email, "profileId": profile_id},
            fallback="Failed to send magic link",
        )

    async def logout(self, refresh_token: Optional[str]) -> None:
        await self._call(
            "/auth/logout",
            {"refreshToken": refresh_token},
            fallback="Failed to logout",
        )

    async def delete_account(self, user_id: str) -> None:
        await self._call(
            "/auth/delete-account",
            {"userId": user_id, "confirmDelete": True},
            fallback="Failed to delete account",
        )
