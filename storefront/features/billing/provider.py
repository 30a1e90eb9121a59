"""
Backend provider protocol.

Defines the interface to the backend of record (verify-token, checkout
sessions, token unlocks). Entitlement and checkout logic depend on this
protocol only, so the HTTP client can be swapped for a fake in tests.
"""
from typing import Protocol, Optional

from storefront.models.entitlement import IssuedCredential, RefreshedCredential, VerifiedAccount

FREE_UNLOCK_TOKEN_COST = 2


class BackendProvider(Protocol):
    """
    Protocol for the backend of record.

    Every method raises UpstreamError when the call fails (network error or
    non-success response), except where noted.
    """

    async def verify_token(self, token: str) -> VerifiedAccount:
        """
        Resolve memberships, purchases and tokens for an access token.

        An invalid token is not an error: the result has valid=False.
        """
        ...

    async def refresh_token(self, refresh_token: str) -> RefreshedCredential:
        """Exchange a refresh token for a new access token."""
        ...

    async def verify_checkout_session(self, session_id: str, profile_id: str) -> IssuedCredential:
        """
        Confirm a checkout session server-side and issue the viewer's credential.

        Safe to call repeatedly for the same session.
        """
        ...

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
        """Create a membership checkout session. Returns the checkout URL."""
        ...

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
        """Create a one-off content checkout session. Returns the checkout URL."""
        ...

    async def create_portal_session(self, customer_email: str, return_url: str) -> str:
        """Create a subscription-management portal session. Returns its URL."""
        ...

    async def unlock_content_with_tokens(
        self,
        profile_id: str,
        video_id: str,
        customer_email: str,
        tokens_to_use: int = FREE_UNLOCK_TOKEN_COST,
    ) -> bool:
        """
        Unlock one item by spending exactly two purchase tokens.

        Raises InvalidTokenUnlockError for any other token count, before any call.
        """
        ...

    async def create_free_membership(self, profile_id: str, token: str) -> bool:
        """Follow a zero-price profile."""
        ...

    async def award_pending_tokens(self) -> int:
        """Ask the backend to award tokens that are due. Returns the number awarded."""
        ...

    async def send_magic_link(self, email: str, profile_id: str) -> None:
        """Email a login link."""
        ...

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the refresh token."""
        ...

    async def delete_account(self, user_id: str) -> None:
        """Delete the viewer's account."""
        ...


class BackendProviderError(Exception):
    """Base exception for backend provider errors."""
    pass


class UpstreamError(BackendProviderError):
    """The backend was unreachable or answered with a failure."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
