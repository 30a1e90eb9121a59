"""
Profile page routes.

- GET  /v1/profiles/{profile_id}: rendered page view for the viewer
- POST /v1/profiles/{profile_id}/checkout-return: reconcile a checkout return
- POST /v1/profiles/{profile_id}/items/{video_id}/purchase: buy one item
- POST /v1/profiles/{profile_id}/membership: membership CTA click
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from storefront.api.deps import (
    get_catalog,
    get_credential_store,
    get_orchestrator,
    get_provider,
    get_settings,
    get_source,
)
from storefront.core.config import Settings
from storefront.core.errors import ValidationError
from storefront.features.billing.provider import BackendProvider
from storefront.features.catalog.service import ProfileCatalog
from storefront.features.checkout.orchestrator import CheckoutOrchestrator
from storefront.features.checkout.returns import parse_return, profile_url, strip_return_params
from storefront.features.entitlements.sources import EntitlementSource
from storefront.features.session.refresh import ensure_fresh_credential
from storefront.features.session.store import CookieCredentialStore
from storefront.features.tokens.award import schedule_award_pending
from storefront.features.unlock.engine import PageView, build_state, render

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/profiles", tags=["profiles"])


class PurchaseIn(BaseModel):
    confirm_token_unlock: bool = False


class PurchaseOut(BaseModel):
    action: str
    url: Optional[str] = None
    quote: Optional[Dict[str, Any]] = None
    page: Optional[PageView] = None


class MembershipOut(BaseModel):
    action: str
    url: Optional[str] = None
    page: Optional[PageView] = None


class CheckoutReturnOut(BaseModel):
    outcome: str
    page: PageView
    canonical_url: str


@router.get("/{profile_id}", response_model=PageView)
async def get_profile_page(
    profile_id: str,
    catalog: ProfileCatalog = Depends(get_catalog),
    source: EntitlementSource = Depends(get_source),
    provider: BackendProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    """Resolve the viewer's entitlements and render the profile page."""
    profile = catalog.require(profile_id)
    credential = await ensure_fresh_credential(store, provider)
    if settings.AWARD_PENDING_ENABLED and credential is not None:
        schedule_award_pending(provider)

    entitlements = await source.resolve(credential, profile.id)
    state = build_state(profile, entitlements, authenticated=credential is not None)
    return render(state)


@router.post("/{profile_id}/checkout-return", response_model=CheckoutReturnOut)
async def checkout_return(
    profile_id: str,
    request: Request,
    catalog: ProfileCatalog = Depends(get_catalog),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    """
    Consume the return indicator from an external checkout.

    Errors:
        400: No return indicator in the query
        502: Payment went through but could not be reconciled
    """
    profile = catalog.require(profile_id)
    params = dict(request.query_params)
    parsed = parse_return(params)
    if parsed is None:
        raise ValidationError("No checkout return indicator")

    query = request.url.query
    base = profile_url(settings.APP_URL, profile.id)
    canonical = strip_return_params(f"{base}?{query}" if query else base)

    outcome = await orchestrator.handle_return(profile, parsed, store)
    state = build_state(profile, outcome.entitlements, authenticated=outcome.credential is not None)
    return CheckoutReturnOut(outcome=outcome.outcome, page=render(state), canonical_url=canonical)


@router.post("/{profile_id}/items/{video_id}/purchase", response_model=PurchaseOut)
async def purchase_item(
    profile_id: str,
    video_id: str,
    body: Optional[PurchaseIn] = None,
    catalog: ProfileCatalog = Depends(get_catalog),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    provider: BackendProvider = Depends(get_provider),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    """
    Buy one paid item.

    Returns:
        action=checkout with the checkout url, token_unlock with the
        re-resolved page, confirmation_required when a token unlock awaits
        confirmation, or login_required with the login url
    """
    profile = catalog.require(profile_id)
    data = body or PurchaseIn()
    credential = await ensure_fresh_credential(store, provider)
    outcome = await orchestrator.purchase(
        profile,
        video_id,
        credential,
        confirm_token_unlock=data.confirm_token_unlock,
        current_path=f"/{profile.id}",
    )

    page = None
    if outcome.entitlements is not None:
        page = render(build_state(profile, outcome.entitlements, authenticated=True))
    return PurchaseOut(
        action=outcome.action,
        url=outcome.url,
        quote=outcome.quote.to_dict() if outcome.quote else None,
        page=page,
    )


@router.post("/{profile_id}/membership", response_model=MembershipOut)
async def membership_cta(
    profile_id: str,
    catalog: ProfileCatalog = Depends(get_catalog),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    provider: BackendProvider = Depends(get_provider),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    """Membership CTA: subscribe, follow, or manage an existing membership."""
    profile = catalog.require(profile_id)
    credential = await ensure_fresh_credential(store, provider)
    outcome = await orchestrator.membership_action(profile, credential, current_path=f"/{profile.id}")

    page = None
    if outcome.entitlements is not None:
        page = render(build_state(profile, outcome.entitlements, authenticated=True))
    return MembershipOut(action=outcome.action, url=outcome.url, page=page)
