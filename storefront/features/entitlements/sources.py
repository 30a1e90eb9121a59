"""
storefront/features/entitlements/sources.py

Entitlement sources. One is selected at startup and used for every call:

- LiveEntitlementSource: verify-token on the backend of record
- FixtureEntitlementSource: canned states (none / membership / all) for
  exercising the unlock engine without live payments; refused in production
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from storefront.core.config import Settings
from storefront.core.validation import EnvValidationError
from storefront.features.billing.provider import BackendProvider, UpstreamError
from storefront.features.catalog.service import ProfileCatalog
from storefront.features.entitlements.service import (
    LOCKED,
    VERIFICATION_FAILED,
    ResolvedEntitlements,
    filter_for_profile,
)
from storefront.features.session.store import Credential
from storefront.models.entitlement import Membership, PurchaseToken, User

logger = logging.getLogger(__name__)

FIXTURE_MODES = ("none", "membership", "all")


class EntitlementSource(Protocol):
    name: str

    async def resolve(self, credential: Optional[Credential], profile_id: str) -> ResolvedEntitlements:
        """Resolve the viewer's entitlements for one profile. Never raises for verification failures."""
        ...


class LiveEntitlementSource:
    """Resolves through the backend's verify-token endpoint."""

    name = "live"

    def __init__(self, provider: BackendProvider):
        self.provider = provider

    async def resolve(self, credential: Optional[Credential], profile_id: str) -> ResolvedEntitlements:
        if credential is None:
            return LOCKED
        if credential.is_expired():
            # Refresh happens before resolution; an expired token never reaches the backend
            return LOCKED

        try:
            account = await self.provider.verify_token(credential.access_token)
        except UpstreamError as e:
            logger.warning(
                "entitlements.verify.failed",
                extra={
                    "profile_id": profile_id,
                    "user_id": credential.user_id,
                    "error_code": "verification_unavailable",
                    "status": e.status_code,
                },
            )
            return VERIFICATION_FAILED

        if not account.valid:
            logger.info(
                "entitlements.verify.invalid_token",
                extra={"profile_id": profile_id, "user_id": credential.user_id},
            )
            return LOCKED

        return filter_for_profile(account, profile_id)


class FixtureEntitlementSource:
    """Fixed states keyed by mode. Ignores the credential entirely."""

    name = "fixture"

    def __init__(self, catalog: ProfileCatalog, mode: str = "none"):
        if mode not in FIXTURE_MODES:
            raise ValueError(f"Unknown fixture mode: {mode}")
        self.catalog = catalog
        self.mode = mode

    async def resolve(self, credential: Optional[Credential], profile_id: str) -> ResolvedEntitlements:
        if self.mode == "none":
            return LOCKED

        membership = Membership(
            profile_id=profile_id,
            status="active",
            cancel_at_period_end=False,
            current_period_end=datetime(2099, 1, 1, tzinfo=timezone.utc),
        )
        user = User(id="fixture-user", email="fixture@example.com")

        if self.mode == "membership":
            return ResolvedEntitlements(
                has_membership=True,
                membership=membership,
                tokens=PurchaseToken(profile_id=profile_id, token_count=1, days_remaining=10),
                user=user,
            )

        profile = self.catalog.get(profile_id)
        purchased = frozenset(item.id for item in profile.items) if profile else frozenset()
        return ResolvedEntitlements(
            has_membership=True,
            membership=membership,
            purchased_video_ids=purchased,
            tokens=PurchaseToken(profile_id=profile_id, token_count=3, days_remaining=15),
            user=user,
        )


def select_entitlement_source(
    settings: Settings,
    provider: BackendProvider,
    catalog: ProfileCatalog,
) -> EntitlementSource:
    """Pick the entitlement source once, at startup."""
    kind = (settings.ENTITLEMENT_SOURCE or "live").lower()
    if kind == "fixture":
        if settings.is_production:
            raise EnvValidationError("ENTITLEMENT_SOURCE=fixture is not allowed in production")
        mode = (settings.ENTITLEMENT_FIXTURE or "none").lower()
        logger.warning(f"[entitlements] fixture source active (mode={mode}); live verification disabled")
        return FixtureEntitlementSource(catalog, mode)
    if kind != "live":
        raise EnvValidationError(f"Unknown ENTITLEMENT_SOURCE: {kind}")
    return LiveEntitlementSource(provider)
