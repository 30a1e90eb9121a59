"""
Request-scoped accessors for collaborators stored on app.state at startup.
"""
from fastapi import Request, Response

from storefront.core.config import Settings
from storefront.features.billing.provider import BackendProvider
from storefront.features.catalog.service import ProfileCatalog
from storefront.features.checkout.orchestrator import CheckoutOrchestrator
from storefront.features.entitlements.sources import EntitlementSource
from storefront.features.session.store import CookieCredentialStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_catalog(request: Request) -> ProfileCatalog:
    return request.app.state.catalog


def get_provider(request: Request) -> BackendProvider:
    return request.app.state.provider


def get_source(request: Request) -> EntitlementSource:
    return request.app.state.entitlement_source


def get_orchestrator(request: Request) -> CheckoutOrchestrator:
    return request.app.state.orchestrator


def get_credential_store(request: Request, response: Response) -> CookieCredentialStore:
    """
    Cookie store bound to this request; cookie writes land on the route's response.

    The response is also kept on request.state so the error handlers can carry
    its Set-Cookie headers when the route raises after clearing a credential.
    """
    request.state.cookie_response = response
    return CookieCredentialStore(request, response, request.app.state.settings)
