"""
storefront/features/page/session.py

ProfilePageSession: one open profile page in a long-lived host.

Owns the current PageEntitlementState, the single promotion countdown and
the per-item in-flight guard. Every state change swaps in a new immutable
state; render() is called on demand.
"""

import logging
from dataclasses import replace
from typing import Callable, Mapping, Optional, Set, Tuple

from storefront.core.errors import ConflictError, PaymentReconciliationError
from storefront.features.billing.provider import BackendProvider
from storefront.features.checkout.navigation import NavigationTarget, RedirectTarget
from storefront.features.checkout.orchestrator import (
    CheckoutOrchestrator,
    MembershipOutcome,
    PurchaseOutcome,
    ReturnOutcome,
)
from storefront.features.checkout.returns import parse_return, strip_return_params
from storefront.features.entitlements.sources import EntitlementSource
from storefront.features.promotions.countdown import CountdownSlot, PromotionCountdown
from storefront.features.session.refresh import ensure_fresh_credential
from storefront.features.session.store import CredentialStore
from storefront.features.tokens.award import schedule_award_pending
from storefront.features.unlock.engine import (
    PageEntitlementState,
    PageView,
    apply_recheck,
    build_state,
    render,
)
from storefront.models.catalog import Profile

logger = logging.getLogger(__name__)


class ProfilePageSession:
    def __init__(
        self,
        profile: Profile,
        *,
        source: EntitlementSource,
        orchestrator: CheckoutOrchestrator,
        provider: BackendProvider,
        store: CredentialStore,
        award_pending: bool = True,
        opener: Callable[[], NavigationTarget] = RedirectTarget,
        on_change: Optional[Callable[[PageView], None]] = None,
    ):
        self.profile = profile
        self.source = source
        self.orchestrator = orchestrator
        self.provider = provider
        self.store = store
        self.award_pending = award_pending
        self.opener = opener
        self.on_change = on_change
        self.state: PageEntitlementState = PageEntitlementState(profile=profile)
        self.countdown = CountdownSlot()
        self._busy: Set[str] = set()
        self.loads = 0

    def view(self) -> PageView:
        return render(self.state)

    def is_busy(self, key: str) -> bool:
        return key in self._busy

    def _set_state(self, state: PageEntitlementState) -> None:
        self.state = state
        if self.on_change is not None:
            self.on_change(render(state))

    def _restart_countdown(self) -> None:
        promotion = self.state.promotion
        if not promotion.applies:
            self.countdown.clear()
            return
        self.countdown.replace(
            PromotionCountdown(
                promotion.remaining_seconds,
                on_expire=self.reload,
                on_tick=self._on_tick,
            )
        )

    def _on_tick(self, remaining: int) -> None:
        promotion = replace(self.state.promotion, remaining_seconds=remaining)
        self._set_state(replace(self.state, promotion=promotion))

    async def load(self, notice: Optional[str] = None) -> PageView:
        """Start a page view: refresh the credential, resolve, render."""
        credential = await ensure_fresh_credential(self.store, self.provider)
        if self.award_pending and credential is not None:
            schedule_award_pending(self.provider)

        entitlements = await self.source.resolve(credential, self.profile.id)
        self.loads += 1
        self._set_state(
            build_state(
                self.profile,
                entitlements,
                authenticated=credential is not None,
                notice=notice,
            )
        )
        self._restart_countdown()
        return self.view()

    async def reload(self) -> PageView:
        return await self.load()

    async def recheck(self) -> PageView:
        """Opportunistic in-view re-check. Never re-locks an unlocked item."""
        credential = await ensure_fresh_credential(self.store, self.provider)
        entitlements = await self.source.resolve(credential, self.profile.id)
        self._set_state(apply_recheck(self.state, entitlements))
        return self.view()

    async def purchase(self, video_id: str, confirm_token_unlock: bool = False) -> PurchaseOutcome:
        """
        Purchase one item. The item's button is busy for the duration of the
        call and released on every exit path.
        """
        key = f"item:{video_id}"
        if key in self._busy:
            logger.info("page.purchase.ignored_busy", extra={"profile_id": self.profile.id, "video_id": video_id})
            raise ConflictError("This purchase is already in progress")
        self._busy.add(key)
        try:
            credential = await ensure_fresh_credential(self.store, self.provider)
            outcome = await self.orchestrator.purchase(
                self.profile,
                video_id,
                credential,
                confirm_token_unlock=confirm_token_unlock,
                opener=self.opener,
            )
        finally:
            self._busy.discard(key)

        if outcome.action == "token_unlock":
            await self.reload()
        return outcome

    async def click_membership(self) -> MembershipOutcome:
        key = "membership"
        if key in self._busy:
            raise ConflictError("This action is already in progress")
        self._busy.add(key)
        try:
            credential = await ensure_fresh_credential(self.store, self.provider)
            outcome = await self.orchestrator.membership_action(self.profile, credential, opener=self.opener)
        finally:
            self._busy.discard(key)

        if outcome.action == "free_membership":
            await self.reload()
        return outcome

    async def handle_return(self, url: str, params: Mapping[str, Optional[str]]) -> Tuple[Optional[ReturnOutcome], str]:
        """
        Consume a checkout return indicator.

        Returns the outcome (None when the URL carries no indicator) and the
        canonical URL with indicators stripped. On reconciliation failure the
        prior state is kept whole and a notice is set before re-raising.
        """
        canonical = strip_return_params(url)
        checkout_return = parse_return(params)
        if checkout_return is None:
            return None, canonical

        try:
            outcome = await self.orchestrator.handle_return(self.profile, checkout_return, self.store)
        except PaymentReconciliationError as e:
            self._set_state(self.state.with_notice(e.message))
            raise

        self._set_state(
            build_state(
                self.profile,
                outcome.entitlements,
                authenticated=outcome.credential is not None,
            )
        )
        self._restart_countdown()
        return outcome, canonical

    def close(self) -> None:
        self.countdown.clear()
