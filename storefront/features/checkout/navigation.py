"""
storefront/features/checkout/navigation.py

Two-phase navigation to an external payment surface.

The target (a pre-opened tab in a browser host, a pending redirect over HTTP)
is reserved before the checkout session exists and filled in once the URL is
known. It is closed on every exit path that did not navigate it.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class NavigationTarget(Protocol):
    navigated: bool
    closed: bool

    def navigate(self, url: str) -> None:
        ...

    def close(self) -> None:
        ...


class RedirectTarget:
    """Navigation target for HTTP callers: the URL is returned to the client."""

    def __init__(self):
        self.url: Optional[str] = None
        self.navigated = False
        self.closed = False

    def navigate(self, url: str) -> None:
        if self.closed:
            raise RuntimeError("navigation target already closed")
        self.url = url
        self.navigated = True

    def close(self) -> None:
        self.closed = True


@asynccontextmanager
async def reserved_navigation(opener: Callable[[], NavigationTarget]) -> AsyncIterator[NavigationTarget]:
    """
    Reserve a navigation target for the duration of an async checkout call.

    Usage:
        async with reserved_navigation(RedirectTarget) as target:
            url = await provider.create_content_checkout_session(...)
            target.navigate(url)
    """
    target = opener()
    try:
        yield target
    except BaseException:
        if not target.closed:
            target.close()
            logger.info("checkout.navigation.closed", extra={"event_type": "error"})
        raise
    else:
        if not target.navigated and not target.closed:
            target.close()
            logger.info("checkout.navigation.closed", extra={"event_type": "unused"})
