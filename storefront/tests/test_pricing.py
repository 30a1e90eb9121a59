"""
storefront/tests/test_pricing.py
Price resolution priority and discount math.
"""

from datetime import datetime, timedelta, timezone

import pytest

from storefront.core.errors import PricingFaultError
from storefront.features.pricing.service import PriceQuote, ensure_chargeable, price
from storefront.features.promotions.clock import INACTIVE, PromotionState, discounted_price
from storefront.models.catalog import ContentItem, MediaRefs
from storefront.models.entitlement import PurchaseToken


def item(base_price: int = 699) -> ContentItem:
    return ContentItem(
        id="video3",
        type="paid",
        base_price=base_price,
        media=MediaRefs(preview="/p.mp4", full="/f.mp4"),
    )


def tokens(count: int) -> PurchaseToken:
    return PurchaseToken(profile_id="profile1", token_count=count, days_remaining=10)


def promo(percentage: int) -> PromotionState:
    return PromotionState(
        active=True,
        remaining_seconds=600,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
        percentage=percentage,
    )


def test_two_tokens_select_free_unlock_over_promotion():
    quote = price(item(), tokens(2), promo(20))
    assert quote.free_unlock is True
    assert quote.tokens_to_consume == 2
    assert quote.amount_due == 0
    assert quote.promotion_applied is False


def test_more_than_two_tokens_still_consume_exactly_two():
    quote = price(item(), tokens(5), INACTIVE)
    assert quote.free_unlock is True
    assert quote.tokens_to_consume == 2


def test_one_token_halves_price_regardless_of_promotion():
    assert price(item(699), tokens(1), promo(17)).amount_due == 350
    assert price(item(699), tokens(1), INACTIVE).amount_due == 350
    quote = price(item(699), tokens(1), promo(90))
    assert quote.tokens_to_consume == 1
    assert quote.free_unlock is False


def test_promotion_price_rounds_half_up():
    quote = price(item(699), tokens(0), promo(17))
    assert quote.amount_due == 580
    assert quote.promotion_applied is True
    assert quote.tokens_to_consume == 0


def test_zero_percent_promotion_is_base_price():
    quote = price(item(699), None, promo(0))
    assert quote.amount_due == 699
    assert quote.promotion_applied is False


def test_inactive_promotion_is_base_price():
    expired = PromotionState(active=False, percentage=50)
    assert price(item(699), tokens(0), expired).amount_due == 699


def test_pricing_is_idempotent():
    args = (item(799), tokens(1), promo(25))
    assert price(*args) == price(*args)


@pytest.mark.parametrize(
    "base,pct,expected",
    [(699, 17, 580), (1, 50, 1), (3, 50, 2), (5, 10, 5), (799, 25, 599), (1000, 100, 0)],
)
def test_discounted_price(base, pct, expected):
    assert discounted_price(base, pct) == expected


def test_discounted_price_rejects_out_of_range_percentage():
    with pytest.raises(ValueError):
        discounted_price(100, 101)


def test_paid_flow_below_one_unit_is_a_fault():
    quote = price(item(699), None, promo(100))
    assert quote.amount_due == 0
    with pytest.raises(PricingFaultError):
        ensure_chargeable(quote, "video3")


def test_free_unlock_quote_is_not_chargeable():
    with pytest.raises(PricingFaultError):
        ensure_chargeable(price(item(), tokens(2)), "video3")


def test_chargeable_quote_passes_through():
    quote = PriceQuote(amount_due=350, tokens_to_consume=1, base_price=699)
    assert ensure_chargeable(quote) is quote
