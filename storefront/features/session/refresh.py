"""
Access token refresh.

An expired access token is exchanged once for a new one before any
entitlement call. A failed refresh clears the stored credential, which
resolves the viewer as anonymous.
"""
import logging
from datetime import datetime
from typing import Optional

from storefront.features.billing.provider import BackendProvider, UpstreamError
from storefront.features.session.store import Credential, CredentialStore

logger = logging.getLogger(__name__)


async def ensure_fresh_credential(
    store: CredentialStore,
    provider: BackendProvider,
    now: Optional[datetime] = None,
) -> Optional[Credential]:
    """
    Load the credential, refreshing it when its access token has expired.

    Returns:
        A usable credential, or None when there is none (or refresh failed)
    """
    credential = store.load()
    if credential is None or not credential.is_expired(now):
        return credential

    if not credential.refresh_token:
        logger.info("session.expired.no_refresh_token", extra={"user_id": credential.user_id})
        store.clear()
        return None

    try:
        refreshed = await provider.refresh_token(credential.refresh_token)
    except UpstreamError as e:
        logger.warning(
            "session.refresh.failed",
            extra={"user_id": credential.user_id, "status": e.status_code, "error_code": "refresh_failed"},
        )
        store.clear()
        return None

    user = refreshed.user
    updated = credential.with_access_token(
        refreshed.access_token,
        user_id=user.id if user else None,
        email=user.email if user else None,
    )
    store.save(updated)
    logger.info("session.refresh.ok", extra={"user_id": updated.user_id})
    return updated
