"""
storefront/features/checkout/orchestrator.py

Checkout orchestration: purchases, membership CTA actions and checkout returns.

Ordering rules:
- Nothing is reported as unlocked before the backend call that grants it
  has succeeded and entitlements have been re-resolved from the backend.
- One in-flight action per viewer and target; a duplicate is a ConflictError.
- A successful return is reconciled server-side before any credential is
  stored, and is recorded in the replay ledger only once reconciled.
"""

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Literal, Optional, Set
from urllib.parse import quote

from storefront.core import idempotency
from storefront.core.config import Settings
from storefront.core.logging import log_event
from storefront.core.errors import (
    CheckoutInitiationError,
    ConflictError,
    InvalidTokenUnlockError,
    NotFoundError,
    PaymentReconciliationError,
    PricingFaultError,
    UnauthenticatedError,
    ValidationError,
)
from storefront.features.billing.provider import FREE_UNLOCK_TOKEN_COST, BackendProvider, UpstreamError
from storefront.features.checkout.navigation import NavigationTarget, RedirectTarget, reserved_navigation
from storefront.features.checkout.returns import (
    CheckoutReturn,
    content_return_urls,
    membership_return_urls,
)
from storefront.features.entitlements.service import ResolvedEntitlements
from storefront.features.entitlements.sources import EntitlementSource
from storefront.features.pricing.service import PriceQuote, ensure_chargeable, price
from storefront.features.promotions.clock import evaluate
from storefront.features.session.store import Credential, CredentialStore
from storefront.features.unlock.engine import cta_state
from storefront.models.catalog import Profile

logger = logging.getLogger(__name__)

PurchaseAction = Literal["checkout", "token_unlock", "confirmation_required", "login_required"]
MembershipAction = Literal["checkout", "portal", "free_membership", "login_required"]
ReturnOutcomeKind = Literal["success", "replayed", "canceled"]

RECONCILIATION_MESSAGE = (
    "Payment successful, but we could not unlock your content yet. "
    "Please refresh the page in a moment or contact support."
)
CHECKOUT_FAILED_MESSAGE = "Could not start checkout. Please try again."
VERIFY_FAILED_MESSAGE = "Could not verify your account right now. Please try again."


@dataclass(frozen=True)
class PurchaseOutcome:
    action: PurchaseAction
    quote: Optional[PriceQuote] = None
    url: Optional[str] = None
    entitlements: Optional[ResolvedEntitlements] = None


@dataclass(frozen=True)
class MembershipOutcome:
    action: MembershipAction
    url: Optional[str] = None
    entitlements: Optional[ResolvedEntitlements] = None


@dataclass(frozen=True)
class ReturnOutcome:
    outcome: ReturnOutcomeKind
    entitlements: ResolvedEntitlements
    credential: Optional[Credential] = None


def login_redirect(path: str, open_checkout: bool = False) -> str:
    url = f"/login?redirect={quote(path, safe='')}"
    if open_checkout:
        url += "&openStripe=true"
    return url


class InFlightRegistry:
    """Keys of actions currently awaiting the backend."""

    def __init__(self):
        self._keys: Set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        if key in self._keys:
            raise ConflictError("This action is already in progress")
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)


def _viewer_key(credential: Credential) -> str:
    if credential.user_id:
        return credential.user_id
    return hashlib.sha256(credential.access_token.encode("utf-8")).hexdigest()[:16]


class CheckoutOrchestrator:
    def __init__(
        self,
        provider: BackendProvider,
        source: EntitlementSource,
        settings: Settings,
        in_flight: Optional[InFlightRegistry] = None,
    ):
        self.provider = provider
        self.source = source
        self.settings = settings
        self.in_flight = in_flight or InFlightRegistry()

    async def _resolve_for_action(self, credential: Credential, profile_id: str) -> ResolvedEntitlements:
        entitlements = await self.source.resolve(credential, profile_id)
        if entitlements.verification_failed:
            raise CheckoutInitiationError(VERIFY_FAILED_MESSAGE)
        return entitlements

    @staticmethod
    def _customer_email(credential: Credential, entitlements: ResolvedEntitlements) -> Optional[str]:
        if entitlements.user and entitlements.user.email:
            return entitlements.user.email
        return credential.customer_email

    async def purchase(
        self,
        profile: Profile,
        video_id: str,
        credential: Optional[Credential],
        *,
        confirm_token_unlock: bool = False,
        opener: Callable[[], NavigationTarget] = RedirectTarget,
        current_path: Optional[str] = None,
    ) -> PurchaseOutcome:
        """
        Buy one paid item.

        With 2+ tokens the item is unlocked through the token endpoint after
        explicit confirmation; otherwise a checkout session is created for the
        resolved amount and the reserved navigation target is sent to it.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Item is not sold individually
            ConflictError: Item already owned, or a purchase already in flight
            InvalidTokenUnlockError: Token unlock rejected
            PricingFaultError: Paid flow resolved below the minimum charge
            CheckoutInitiationError: Checkout session could not be created
        """
        item = profile.get_item(video_id)
        if item is None:
            raise NotFoundError(f"Item {video_id} not found")
        if item.type != "paid":
            raise ValidationError(f"Item {video_id} is not sold individually")

        path = current_path or f"/{profile.id}"
        if credential is None:
            return PurchaseOutcome(action="login_required", url=login_redirect(path))

        with self.in_flight.hold(f"purchase:{_viewer_key(credential)}:{profile.id}:{video_id}"):
            entitlements = await self._resolve_for_action(credential, profile.id)
            if entitlements.user is None:
                return PurchaseOutcome(action="login_required", url=login_redirect(path))
            if entitlements.owns(video_id):
                raise ConflictError(f"Item {video_id} is already unlocked")

            membership = entitlements.membership if entitlements.has_membership else None
            promotion = evaluate(membership, profile.promotion_percentage)
            quote = price(item, entitlements.tokens, promotion)
            email = self._customer_email(credential, entitlements)

            if quote.free_unlock:
                if not confirm_token_unlock:
                    return PurchaseOutcome(action="confirmation_required", quote=quote)
                refreshed = await self._unlock_with_tokens(profile, video_id, credential, email, entitlements)
                return PurchaseOutcome(action="token_unlock", quote=quote, entitlements=refreshed)

            ensure_chargeable(quote, video_id)
            success_url, cancel_url = content_return_urls(self.settings.APP_URL, profile.id, video_id)

            async with reserved_navigation(opener) as target:
                try:
                    url = await self.provider.create_content_checkout_session(
                        profile_id=profile.id,
                        video_id=video_id,
                        amount_due=quote.amount_due,
                        tokens_to_use=quote.tokens_to_consume,
                        customer_email=email,
                        success_url=success_url,
                        cancel_url=cancel_url,
                        video_title=item.title or None,
                        creator_display_name=profile.display_name or None,
                        debug_secret=self.settings.debug_secret(),
                    )
                except UpstreamError as e:
                    logger.error(
                        "checkout.session.failed",
                        extra={"profile_id": profile.id, "video_id": video_id, "status": e.status_code, "error_code": "checkout_failed"},
                    )
                    raise CheckoutInitiationError(CHECKOUT_FAILED_MESSAGE) from e
                target.navigate(url)

            logger.info(
                "checkout.session.created",
                extra={"profile_id": profile.id, "video_id": video_id, "user_id": credential.user_id},
            )
            return PurchaseOutcome(action="checkout", quote=quote, url=url)

    async def _unlock_with_tokens(
        self,
        profile: Profile,
        video_id: str,
        credential: Credential,
        email: Optional[str],
        entitlements: ResolvedEntitlements,
    ) -> ResolvedEntitlements:
        if entitlements.token_count < FREE_UNLOCK_TOKEN_COST:
            raise InvalidTokenUnlockError("Not enough tokens to unlock this content")
        if not email:
            raise UnauthenticatedError("An account email is required to use tokens")

        try:
            await self.provider.unlock_content_with_tokens(
                profile_id=profile.id,
                video_id=video_id,
                customer_email=email,
                tokens_to_use=FREE_UNLOCK_TOKEN_COST,
            )
        except UpstreamError as e:
            logger.warning(
                "checkout.token_unlock.rejected",
                extra={"profile_id": profile.id, "video_id": video_id, "status": e.status_code, "error_code": "invalid_token_unlock"},
            )
            if e.status_code is not None and 400 <= e.status_code < 500:
                raise InvalidTokenUnlockError(e.message) from e
            raise CheckoutInitiationError("Could not unlock content with tokens. Please try again.") from e

        logger.info("checkout.token_unlock.ok", extra={"profile_id": profile.id, "video_id": video_id, "user_id": credential.user_id})
        # Tokens are spent server-side; ownership comes only from a fresh snapshot
        return await self.source.resolve(credential, profile.id)

    async def membership_action(
        self,
        profile: Profile,
        credential: Optional[Credential],
        *,
        opener: Callable[[], NavigationTarget] = RedirectTarget,
        current_path: Optional[str] = None,
    ) -> MembershipOutcome:
        """
        Handle a click on the membership CTA.

        subscribe: free membership on zero-price profiles, checkout otherwise.
        subscribed / renew: the subscription-management portal.
        """
        path = current_path or f"/{profile.id}"
        if credential is None:
            return MembershipOutcome(
                action="login_required",
                url=login_redirect(path, open_checkout=not profile.is_free_membership),
            )

        with self.in_flight.hold(f"membership:{_viewer_key(credential)}:{profile.id}"):
            entitlements = await self._resolve_for_action(credential, profile.id)
            if entitlements.user is None:
                return MembershipOutcome(
                    action="login_required",
                    url=login_redirect(path, open_checkout=not profile.is_free_membership),
                )

            email = self._customer_email(credential, entitlements)
            state = cta_state(entitlements.membership)

            if state in ("subscribed", "renew"):
                if not email:
                    raise UnauthenticatedError("An account email is required to manage a membership")
                return_url = f"{self.settings.APP_URL.rstrip('/')}/account"
                async with reserved_navigation(opener) as target:
                    try:
                        url = await self.provider.create_portal_session(email, return_url)
                    except UpstreamError as e:
                        logger.error(
                            "checkout.portal.failed",
                            extra={"profile_id": profile.id, "status": e.status_code, "error_code": "checkout_failed"},
                        )
                        raise CheckoutInitiationError("Could not open subscription management. Please try again.") from e
                    target.navigate(url)
                return MembershipOutcome(action="portal", url=url)

            if profile.is_free_membership:
                try:
                    await self.provider.create_free_membership(profile.id, credential.access_token)
                except UpstreamError as e:
                    logger.error(
                        "checkout.free_membership.failed",
                        extra={"profile_id": profile.id, "status": e.status_code, "error_code": "checkout_failed"},
                    )
                    raise CheckoutInitiationError("Could not follow this profile. Please try again.") from e
                refreshed = await self.source.resolve(credential, profile.id)
                logger.info("checkout.free_membership.ok", extra={"profile_id": profile.id, "user_id": credential.user_id})
                return MembershipOutcome(action="free_membership", entitlements=refreshed)

            if profile.membership_price is None or profile.membership_price < 1:
                raise PricingFaultError(f"Profile {profile.id} has no chargeable membership price")

            success_url, cancel_url = membership_return_urls(self.settings.APP_URL, profile.id)
            async with reserved_navigation(opener) as target:
                try:
                    url = await self.provider.create_membership_session(
                        profile_id=profile.id,
                        price_amount=profile.membership_price,
                        customer_email=email,
                        success_url=success_url,
                        cancel_url=cancel_url,
                        display_name=profile.display_name or None,
                        debug_secret=self.settings.debug_secret(),
                    )
                except UpstreamError as e:
                    logger.error(
                        "checkout.membership_session.failed",
                        extra={"profile_id": profile.id, "status": e.status_code, "error_code": "checkout_failed"},
                    )
                    raise CheckoutInitiationError(CHECKOUT_FAILED_MESSAGE) from e
                target.navigate(url)

            logger.info("checkout.membership_session.created", extra={"profile_id": profile.id, "user_id": credential.user_id})
            return MembershipOutcome(action="checkout", url=url)

    async def handle_return(
        self,
        profile: Profile,
        checkout_return: CheckoutReturn,
        store: CredentialStore,
    ) -> ReturnOutcome:
        """
        Reconcile a checkout return.

        canceled: no server calls beyond a normal resolution; prior UI restored.
        success: verify the session server-side, store the issued credential,
        re-resolve. A replay of an already reconciled session only re-resolves.

        Raises:
            PaymentReconciliationError: The backend could not confirm the payment,
                or the fresh snapshot does not show what was paid for
        """
        if checkout_return.status == "canceled":
            logger.info("checkout.return.canceled", extra={"profile_id": profile.id, "event_type": checkout_return.kind})
            credential = store.load()
            entitlements = await self.source.resolve(credential, profile.id)
            return ReturnOutcome(outcome="canceled", entitlements=entitlements, credential=credential)

        if not checkout_return.session_id:
            logger.error("checkout.return.missing_session", extra={"profile_id": profile.id, "error_code": "payment_reconciliation_failed"})
            raise PaymentReconciliationError(RECONCILIATION_MESSAGE)

        key = checkout_return.replay_key
        existing = store.load()
        if existing is not None and idempotency.check_key(key):
            logger.info("checkout.return.replayed", extra={"profile_id": profile.id, "user_id": existing.user_id})
            entitlements = await self.source.resolve(existing, profile.id)
            return ReturnOutcome(outcome="replayed", entitlements=entitlements, credential=existing)

        try:
            issued = await self.provider.verify_checkout_session(checkout_return.session_id, profile.id)
        except UpstreamError as e:
            log_event(
                "error",
                "checkout.return.reconciliation_failed",
                request_id=None,
                profile_id=profile.id,
                event_type=checkout_return.kind,
                error_code="payment_reconciliation_failed",
                extra={"status": e.status_code, "upstream_message": e.message},
            )
            raise PaymentReconciliationError(RECONCILIATION_MESSAGE) from e

        credential = Credential.from_issued(issued)
        store.save(credential)
        entitlements = await self.source.resolve(credential, profile.id)

        # Money has moved; anything short of a verified snapshot that shows the
        # paid item is a reconciliation failure, and the session stays replayable
        item_missing = (
            checkout_return.kind == "content"
            and bool(checkout_return.video_id)
            and not entitlements.owns(checkout_return.video_id)
        )
        if entitlements.verification_failed or item_missing:
            log_event(
                "error",
                "checkout.return.unlock_pending",
                request_id=None,
                user_id=credential.user_id,
                profile_id=profile.id,
                event_type=checkout_return.kind,
                error_code="payment_reconciliation_failed",
                extra={
                    "video_id": checkout_return.video_id,
                    "verification_failed": entitlements.verification_failed,
                },
            )
            raise PaymentReconciliationError(RECONCILIATION_MESSAGE)

        duplicate = idempotency.check_and_set(key, "checkout_return")

        logger.info(
            "checkout.return.reconciled",
            extra={"profile_id": profile.id, "user_id": credential.user_id, "event_type": checkout_return.kind},
        )
        return ReturnOutcome(
            outcome="replayed" if duplicate else "success",
            entitlements=entitlements,
            credential=credential,
        )
