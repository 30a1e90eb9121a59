"""
storefront/features/entitlements/service.py

Entitlement resolution for one viewer against one profile.

The backend's verify-token snapshot covers every profile the viewer has ever
touched; this module narrows it to the profile being viewed. Everything here
is pure: same snapshot in, same resolution out.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional

from storefront.models.entitlement import Membership, PurchaseToken, User, VerifiedAccount


@dataclass(frozen=True)
class ResolvedEntitlements:
    """
    What the viewer holds against one profile.

    `verification_failed` is a soft UI signal only. Gating treats it exactly
    like an anonymous viewer.
    """
    has_membership: bool = False
    membership: Optional[Membership] = None
    purchased_video_ids: FrozenSet[str] = frozenset()
    tokens: Optional[PurchaseToken] = None
    user: Optional[User] = None
    verification_failed: bool = False

    @property
    def token_count(self) -> int:
        return self.tokens.token_count if self.tokens else 0

    def owns(self, video_id: str) -> bool:
        return video_id in self.purchased_video_ids


LOCKED = ResolvedEntitlements()
VERIFICATION_FAILED = ResolvedEntitlements(verification_failed=True)


def filter_for_profile(account: VerifiedAccount, profile_id: str) -> ResolvedEntitlements:
    """
    Narrow a verify-token snapshot to one profile (exact profile id match).

    The membership is only reported when it is active or trialing; a canceled
    or lapsed membership for the profile resolves as no membership.
    """
    if not account.valid:
        return LOCKED

    membership = next(
        (m for m in account.memberships if m.profile_id == profile_id and m.is_active),
        None,
    )
    purchased = frozenset(
        pc.video_id for pc in account.purchased_content if pc.profile_id == profile_id
    )
    tokens = next(
        (t for t in account.purchase_tokens if t.profile_id == profile_id),
        None,
    )

    return ResolvedEntitlements(
        has_membership=membership is not None,
        membership=membership,
        purchased_video_ids=purchased,
        tokens=tokens,
        user=account.user,
    )
