"""
storefront/models/entitlement.py

Wire models for the verify-token snapshot returned by the backend of record.

Memberships, purchases and purchase tokens are owned by the backend. The
storefront mirrors them read-only for the duration of one page view and never
persists them.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACTIVE_MEMBERSHIP_STATUSES = frozenset({"active", "trialing"})


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    """Frozen model that accepts the backend's camelCase keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class User(WireModel):
    id: str
    email: Optional[str] = None


class Membership(WireModel):
    """
    A recurring subscription to one profile.

    Grants membership-tier content iff status is active or trialing.
    `promotion_expires_at`, when in the future, opens the time-boxed discount
    on the profile's pay-per-item content.
    """
    profile_id: str = Field(alias="profileId")
    status: str = "other"
    cancel_at_period_end: bool = Field(default=False, alias="cancelAtPeriodEnd")
    current_period_end: Optional[datetime] = Field(default=None, alias="currentPeriodEnd")
    promotion_expires_at: Optional[datetime] = Field(default=None, alias="promotionExpiresAt")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Optional[str]) -> str:
        return (value or "other").strip().lower()

    @field_validator("current_period_end", "promotion_expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_MEMBERSHIP_STATUSES

    @property
    def renewal_enabled(self) -> bool:
        return not self.cancel_at_period_end


class PurchasedContent(WireModel):
    """A one-off unlock of exactly one item, permanent regardless of membership."""
    profile_id: str = Field(alias="profileId")
    video_id: str = Field(alias="videoId")
    amount: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class PurchaseToken(WireModel):
    """Loyalty credits accrued over membership time, per profile."""
    profile_id: str = Field(alias="profileId")
    token_count: int = Field(default=0, alias="tokenCount")
    days_remaining: int = Field(default=0, alias="daysRemaining")

    @field_validator("token_count", "days_remaining", mode="before")
    @classmethod
    def _non_negative(cls, value: Optional[int]) -> int:
        if value is None:
            return 0
        return max(0, int(value))


class VerifiedAccount(WireModel):
    """Result of POST verify-token."""
    valid: bool = False
    user: Optional[User] = None
    memberships: Tuple[Membership, ...] = ()
    purchased_content: Tuple[PurchasedContent, ...] = Field(default=(), alias="purchasedContent")
    purchase_tokens: Tuple[PurchaseToken, ...] = Field(default=(), alias="purchaseTokens")
    reason: Optional[str] = None

    @field_validator("memberships", "purchased_content", "purchase_tokens", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ()


class IssuedCredential(WireModel):
    """Tokens issued by verify-session after a checkout return or a login."""
    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    user: User


class RefreshedCredential(WireModel):
    """Result of refresh-token; the refresh token itself is kept."""
    access_token: str = Field(alias="accessToken")
    user: Optional[User] = None
