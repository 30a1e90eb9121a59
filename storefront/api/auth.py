"""
Account routes.

- POST /v1/auth/magic-link: email a login link
- POST /v1/auth/logout: revoke the refresh token (best effort) and clear cookies
- POST /v1/auth/delete-account: delete the account and clear cookies
- GET  /v1/account: memberships, purchases and tokens across all profiles
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from storefront.api.deps import get_catalog, get_credential_store, get_provider
from storefront.core.errors import AppError, UnauthenticatedError, ValidationError, VerificationUnavailableError
from storefront.features.billing.provider import BackendProvider, UpstreamError
from storefront.features.catalog.service import ProfileCatalog
from storefront.features.session.refresh import ensure_fresh_credential
from storefront.features.session.store import CookieCredentialStore
from storefront.features.unlock.engine import cta_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["auth"])


class MagicLinkIn(BaseModel):
    email: str
    profile_id: str

    @field_validator("email", "profile_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip()


class DeleteAccountIn(BaseModel):
    confirm_delete: bool = False


class AccountMembership(BaseModel):
    profile_id: str
    display_name: Optional[str] = None
    status: str
    cta: str
    cancel_at_period_end: bool
    current_period_end: Optional[str] = None


class AccountPurchase(BaseModel):
    profile_id: str
    video_id: str
    amount: Optional[int] = None


class AccountTokens(BaseModel):
    profile_id: str
    token_count: int
    days_remaining: int


class AccountOut(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    memberships: List[AccountMembership] = []
    purchases: List[AccountPurchase] = []
    tokens: List[AccountTokens] = []


@router.post("/auth/magic-link")
async def request_magic_link(data: MagicLinkIn, provider: BackendProvider = Depends(get_provider)):
    if "@" not in data.email:
        raise ValidationError("A valid email is required")
    if not data.profile_id:
        raise ValidationError("profile_id is required")

    try:
        await provider.send_magic_link(data.email, data.profile_id)
    except UpstreamError as e:
        logger.error("auth.magic_link.failed", extra={"profile_id": data.profile_id, "status": e.status_code})
        raise AppError("Could not send the login link. Please try again.", code="magic_link_failed", status_code=502)
    return {"status": "sent"}


@router.post("/auth/logout")
async def logout(
    provider: BackendProvider = Depends(get_provider),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    credential = store.load()
    if credential is not None:
        try:
            await provider.logout(credential.refresh_token)
        except UpstreamError as e:
            # Cookies are cleared regardless; the refresh token expires on its own
            logger.warning("auth.logout.revoke_failed", extra={"user_id": credential.user_id, "status": e.status_code})
    store.clear()
    return {"status": "ok"}


@router.post("/auth/delete-account")
async def delete_account(
    data: DeleteAccountIn,
    provider: BackendProvider = Depends(get_provider),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    if not data.confirm_delete:
        raise ValidationError("Account deletion must be confirmed")

    credential = await ensure_fresh_credential(store, provider)
    if credential is None:
        raise UnauthenticatedError("Login required")

    user_id = credential.user_id
    if not user_id:
        try:
            account = await provider.verify_token(credential.access_token)
        except UpstreamError:
            raise VerificationUnavailableError("Could not verify your account right now")
        if not account.valid or account.user is None:
            store.clear()
            raise UnauthenticatedError("Login required")
        user_id = account.user.id

    try:
        await provider.delete_account(user_id)
    except UpstreamError as e:
        logger.error("auth.delete_account.failed", extra={"user_id": user_id, "status": e.status_code})
        raise AppError("Could not delete the account. Please try again.", code="delete_failed", status_code=502)

    store.clear()
    logger.info("auth.delete_account.ok", extra={"user_id": user_id})
    return {"status": "deleted"}


@router.get("/account", response_model=AccountOut)
async def get_account(
    catalog: ProfileCatalog = Depends(get_catalog),
    provider: BackendProvider = Depends(get_provider),
    store: CookieCredentialStore = Depends(get_credential_store),
):
    credential = await ensure_fresh_credential(store, provider)
    if credential is None:
        raise UnauthenticatedError("Login required")

    try:
        account = await provider.verify_token(credential.access_token)
    except UpstreamError:
        raise VerificationUnavailableError("Could not load your account right now")
    if not account.valid:
        store.clear()
        raise UnauthenticatedError("Login required")

    memberships = []
    for m in account.memberships:
        profile = catalog.get(m.profile_id)
        memberships.append(
            AccountMembership(
                profile_id=m.profile_id,
                display_name=profile.display_name if profile else None,
                status=m.status,
                cta=cta_state(m),
                cancel_at_period_end=m.cancel_at_period_end,
                current_period_end=m.current_period_end.isoformat() if m.current_period_end else None,
            )
        )

    return AccountOut(
        user_id=account.user.id if account.user else credential.user_id,
        email=account.user.email if account.user else credential.email,
        memberships=memberships,
        purchases=[
            AccountPurchase(profile_id=p.profile_id, video_id=p.video_id, amount=p.amount)
            for p in account.purchased_content
        ],
        tokens=[
            AccountTokens(profile_id=t.profile_id, token_count=t.token_count, days_remaining=t.days_remaining)
            for t in account.purchase_tokens
        ],
    )
