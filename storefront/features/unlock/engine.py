"""
storefront/features/unlock/engine.py

Unlock engine: turns resolved entitlements into the page's view model.

PageEntitlementState is the single immutable input; render() is pure and
derives every item state, badge, price and the membership CTA from it.

Item states move one way within a page view (locked-preview -> unlocked).
A new page view (reload) builds a fresh state from the latest snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import FrozenSet, List, Literal, Optional

from pydantic import BaseModel

from storefront.features.entitlements.service import LOCKED, ResolvedEntitlements
from storefront.features.pricing.service import price
from storefront.features.promotions.clock import INACTIVE, PromotionState, evaluate, format_countdown
from storefront.models.catalog import ContentItem, Profile
from storefront.models.entitlement import Membership

ItemState = Literal["locked-preview", "unlocked"]
CTAState = Literal["subscribe", "subscribed", "renew"]

DEFAULT_TOKEN_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def item_unlocked(item: ContentItem, entitlements: ResolvedEntitlements) -> bool:
    """
    Gate for one item.

    free: always. membership: active or trialing membership on the profile,
    never a purchase. paid: a purchase record for the exact item.
    """
    if item.type == "free":
        return True
    if item.type == "membership":
        return entitlements.has_membership
    return entitlements.owns(item.id)


def cta_state(membership: Optional[Membership]) -> CTAState:
    if membership is None or not membership.is_active:
        return "subscribe"
    if membership.cancel_at_period_end or not membership.renewal_enabled:
        return "renew"
    return "subscribed"


@dataclass(frozen=True)
class PageEntitlementState:
    """Everything the render layer needs for one profile page view."""
    profile: Profile
    entitlements: ResolvedEntitlements = LOCKED
    promotion: PromotionState = INACTIVE
    unlocked_ids: FrozenSet[str] = field(default_factory=frozenset)
    authenticated: bool = False
    notice: Optional[str] = None

    @property
    def cta(self) -> CTAState:
        return cta_state(self.entitlements.membership)

    def is_unlocked(self, item_id: str) -> bool:
        return item_id in self.unlocked_ids

    def with_notice(self, notice: Optional[str]) -> "PageEntitlementState":
        return replace(self, notice=notice)


def build_state(
    profile: Profile,
    entitlements: ResolvedEntitlements,
    *,
    authenticated: bool = False,
    now: Optional[datetime] = None,
    notice: Optional[str] = None,
) -> PageEntitlementState:
    """Fresh state for a new page view (page load or reload)."""
    membership = entitlements.membership if entitlements.has_membership else None
    promotion = evaluate(membership, profile.promotion_percentage, now or _utcnow())
    unlocked = frozenset(item.id for item in profile.items if item_unlocked(item, entitlements))
    return PageEntitlementState(
        profile=profile,
        entitlements=entitlements,
        promotion=promotion,
        unlocked_ids=unlocked,
        authenticated=authenticated,
        notice=notice,
    )


def apply_recheck(
    state: PageEntitlementState,
    entitlements: ResolvedEntitlements,
    *,
    now: Optional[datetime] = None,
) -> PageEntitlementState:
    """
    Merge an in-view re-check into the current state.

    A failed verification keeps the prior state whole. Otherwise the new
    snapshot is applied whole, except that items already unlocked in this view
    stay unlocked.
    """
    if entitlements.verification_failed:
        return state

    fresh = build_state(
        state.profile,
        entitlements,
        authenticated=state.authenticated,
        now=now,
        notice=state.notice,
    )
    return replace(fresh, unlocked_ids=fresh.unlocked_ids | state.unlocked_ids)


class PriceBadge(BaseModel):
    base_price: int
    amount_due: int
    promotional: bool = False
    discount_percentage: int = 0
    free_unlock: bool = False
    tokens_to_consume: int = 0


class ItemView(BaseModel):
    id: str
    type: str
    title: str
    state: ItemState
    media_url: str
    thumbnail_url: Optional[str] = None
    locked: bool
    owned: bool = False
    members_badge: bool = False
    price_badge: Optional[PriceBadge] = None


class CTAView(BaseModel):
    state: CTAState
    label: str
    clickable: bool = True
    free_membership: bool = False
    membership_price: Optional[int] = None
    renews_on: Optional[str] = None
    ends_on: Optional[str] = None


class TokenBarView(BaseModel):
    token_count: int
    days_remaining: int
    next_reward: Literal["half_price", "free_unlock"]


class PromotionView(BaseModel):
    active: bool
    percentage: int
    remaining_seconds: int
    countdown: str


class PageView(BaseModel):
    profile_id: str
    display_name: str
    authenticated: bool
    items: List[ItemView]
    cta: CTAView
    token_bar: Optional[TokenBarView] = None
    promotion: Optional[PromotionView] = None
    verification_failed: bool = False
    notice: Optional[str] = None


def _render_item(item: ContentItem, state: PageEntitlementState) -> ItemView:
    unlocked = state.is_unlocked(item.id)
    is_member = state.entitlements.has_membership
    badge = None
    if item.type == "paid" and not unlocked:
        quote = price(item, state.entitlements.tokens, state.promotion)
        badge = PriceBadge(
            base_price=quote.base_price,
            amount_due=quote.amount_due,
            promotional=quote.promotion_applied,
            discount_percentage=state.promotion.percentage if quote.promotion_applied else 0,
            free_unlock=quote.free_unlock,
            tokens_to_consume=quote.tokens_to_consume,
        )

    return ItemView(
        id=item.id,
        type=item.type,
        title=item.title,
        state="unlocked" if unlocked else "locked-preview",
        media_url=item.media.full if unlocked else item.media.preview,
        thumbnail_url=item.media.thumbnail,
        locked=not unlocked,
        owned=unlocked and item.type == "paid",
        members_badge=item.type == "membership" and is_member,
        price_badge=badge,
    )


def _format_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%B %d, %Y")


def _render_cta(state: PageEntitlementState) -> CTAView:
    cta = state.cta
    profile = state.profile
    membership = state.entitlements.membership
    if cta == "subscribe":
        return CTAView(
            state=cta,
            label="follow" if profile.is_free_membership else "subscribe",
            free_membership=profile.is_free_membership,
            membership_price=profile.membership_price,
        )
    period_end = _format_date(membership.current_period_end if membership else None)
    if cta == "renew":
        return CTAView(state=cta, label="renew", membership_price=profile.membership_price, ends_on=period_end)
    return CTAView(state=cta, label="subscribed", membership_price=profile.membership_price, renews_on=period_end)


def _render_token_bar(entitlements: ResolvedEntitlements) -> Optional[TokenBarView]:
    if not entitlements.has_membership:
        return None
    tokens = entitlements.tokens
    count = tokens.token_count if tokens else 0
    days = tokens.days_remaining if tokens else DEFAULT_TOKEN_DAYS
    return TokenBarView(
        token_count=count,
        days_remaining=days,
        next_reward="free_unlock" if count >= 2 else "half_price",
    )


def render(state: PageEntitlementState) -> PageView:
    """Pure projection of a PageEntitlementState."""
    promotion = None
    if state.promotion.applies:
        promotion = PromotionView(
            active=True,
            percentage=state.promotion.percentage,
            remaining_seconds=state.promotion.remaining_seconds,
            countdown=format_countdown(state.promotion.remaining_seconds),
        )

    return PageView(
        profile_id=state.profile.id,
        display_name=state.profile.display_name,
        authenticated=state.authenticated,
        items=[_render_item(item, state) for item in state.profile.items],
        cta=_render_cta(state),
        token_bar=_render_token_bar(state.entitlements),
        promotion=promotion,
        verification_failed=state.entitlements.verification_failed,
        notice=state.notice,
    )
