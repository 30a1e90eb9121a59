"""
storefront/features/promotions/clock.py

Promotion window evaluation and discount math.

All prices are integer minor units. Discounts round half up on exact decimal
arithmetic, for the token half price and promotional prices alike, so the
amount shown is the amount sent to the payment processor.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from storefront.models.entitlement import Membership


@dataclass(frozen=True)
class PromotionState:
    active: bool = False
    remaining_seconds: int = 0
    expires_at: Optional[datetime] = None
    percentage: int = 0

    @property
    def applies(self) -> bool:
        """True when an active window carries a non-zero discount."""
        return self.active and self.percentage > 0


INACTIVE = PromotionState()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evaluate(
    membership: Optional[Membership],
    percentage: int = 0,
    now: Optional[datetime] = None,
) -> PromotionState:
    """
    Evaluate the promotion window attached to a membership.

    Args:
        membership: The viewer's active membership on the profile, if any
        percentage: The profile's promotion percentage (0-100)
        now: Evaluation instant (defaults to current UTC time)

    Returns:
        PromotionState; active iff promotion_expires_at is set and in the future
    """
    if membership is None or membership.promotion_expires_at is None:
        return INACTIVE

    current = now or _utcnow()
    expires_at = membership.promotion_expires_at
    remaining = int((expires_at - current).total_seconds())
    if expires_at <= current:
        return PromotionState(active=False, remaining_seconds=0, expires_at=expires_at, percentage=percentage)

    return PromotionState(
        active=True,
        remaining_seconds=max(0, remaining),
        expires_at=expires_at,
        percentage=percentage,
    )


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def discounted_price(base_price: int, percentage: int) -> int:
    """round(base_price * (1 - percentage / 100)), half up."""
    if not 0 <= percentage <= 100:
        raise ValueError("percentage must be between 0 and 100")
    return round_half_up(Decimal(base_price) * (Decimal(100) - Decimal(percentage)) / Decimal(100))


def format_countdown(remaining_seconds: int) -> str:
    """mm:ss, minutes unbounded (90 minutes renders as 90:00)."""
    seconds = max(0, int(remaining_seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"
