"""
storefront/features/pricing/service.py

Price resolution for pay-per-item content.

Priority, applied in order:
1. 2+ tokens: free unlock, spends exactly 2 tokens, no payment
2. 1 token: half the base price, the token is spent only if checkout succeeds
3. Active promotion with a non-zero percentage: promotional price
4. Base price
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from storefront.core.errors import PricingFaultError
from storefront.features.billing.provider import FREE_UNLOCK_TOKEN_COST
from storefront.features.promotions.clock import INACTIVE, PromotionState, discounted_price, round_half_up
from storefront.models.catalog import ContentItem
from storefront.models.entitlement import PurchaseToken

HALF_PRICE_TOKEN_COST = 1
MIN_CHARGE = 1


@dataclass(frozen=True)
class PriceQuote:
    amount_due: int
    tokens_to_consume: int = 0
    free_unlock: bool = False
    base_price: int = 0
    promotion_applied: bool = False

    def to_dict(self) -> dict:
        return {
            "amount_due": self.amount_due,
            "tokens_to_consume": self.tokens_to_consume,
            "free_unlock": self.free_unlock,
            "base_price": self.base_price,
            "promotion_applied": self.promotion_applied,
        }


def price(
    item: ContentItem,
    tokens: Optional[PurchaseToken],
    promotion: PromotionState = INACTIVE,
) -> PriceQuote:
    """Resolve what the viewer pays for one item. Pure."""
    token_count = tokens.token_count if tokens else 0
    base = item.base_price

    if token_count >= FREE_UNLOCK_TOKEN_COST:
        return PriceQuote(
            amount_due=0,
            tokens_to_consume=FREE_UNLOCK_TOKEN_COST,
            free_unlock=True,
            base_price=base,
        )

    if token_count == HALF_PRICE_TOKEN_COST:
        return PriceQuote(
            amount_due=round_half_up(Decimal(base) * Decimal("0.5")),
            tokens_to_consume=HALF_PRICE_TOKEN_COST,
            base_price=base,
        )

    if promotion.applies:
        return PriceQuote(
            amount_due=discounted_price(base, promotion.percentage),
            base_price=base,
            promotion_applied=True,
        )

    return PriceQuote(amount_due=base, base_price=base)


def ensure_chargeable(quote: PriceQuote, item_id: Optional[str] = None) -> PriceQuote:
    """
    Guard for paid flows. A computed amount below one minor unit is a fault;
    zero-cost unlocks only happen through the free-unlock branch.
    """
    if quote.free_unlock:
        raise PricingFaultError(f"Item {item_id} resolves to a token unlock, not a paid checkout")
    if quote.amount_due < MIN_CHARGE:
        raise PricingFaultError(f"Computed amount {quote.amount_due} for item {item_id} is below the minimum charge")
    return quote
