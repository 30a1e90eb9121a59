import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Load env from storefront/.env
storefront_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(storefront_dir, ".env"))

from storefront.api import auth, health, profiles
from storefront.core.config import Settings, settings, validate_config
from storefront.core.database import create_all_tables, database_configured
from storefront.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from storefront.core.logging import configure_logging
from storefront.core.middleware.request_id import RequestIdMiddleware
from storefront.core.validation import validate_env
from storefront.features.billing.http_provider import HttpBackendProvider
from storefront.features.billing.provider import BackendProvider
from storefront.features.catalog.service import ProfileCatalog, load_catalog
from storefront.features.checkout.orchestrator import CheckoutOrchestrator
from storefront.features.entitlements.sources import EntitlementSource, select_entitlement_source

logger = logging.getLogger("storefront")


def _wire(app: FastAPI, provider: BackendProvider, source: Optional[EntitlementSource]) -> None:
    cfg = app.state.settings
    app.state.provider = provider
    # The entitlement source is chosen once per app; no per-call branching
    app.state.entitlement_source = source or select_entitlement_source(cfg, provider, app.state.catalog)
    app.state.orchestrator = CheckoutOrchestrator(provider, app.state.entitlement_source, cfg)
    logger.info(f"[startup] entitlement source: {app.state.entitlement_source.name}")


def create_app(
    settings_obj: Optional[Settings] = None,
    *,
    source: Optional[EntitlementSource] = None,
    provider: Optional[BackendProvider] = None,
    catalog: Optional[ProfileCatalog] = None,
) -> FastAPI:
    """
    Build the storefront app.

    Args:
        settings_obj: Settings override (defaults to the module settings)
        source: Entitlement source override; selected from settings otherwise
        provider: Backend provider override; an httpx-backed provider is
            opened in the lifespan otherwise
        catalog: Profile catalog override
    """
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_env(settings_obj=cfg)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting storefront...")
        app.state.startup_time = time.time()
        client = None
        if app.state.provider is None:
            client = httpx.AsyncClient(base_url=cfg.API_URL, timeout=cfg.API_TIMEOUT_SECONDS)
            _wire(app, HttpBackendProvider(client, cfg.INTERNAL_API_KEY), source)

        if database_configured():
            try:
                create_all_tables()
            except SQLAlchemyError as e:
                logger.warning(f"[startup] replay ledger unavailable, using memory: {e.__class__.__name__}")

        try:
            yield
        finally:
            if client is not None:
                await client.aclose()
            logger.info("Stopping storefront...")

    app = FastAPI(title="Storefront", lifespan=lifespan)
    app.state.settings = cfg
    app.state.catalog = catalog or load_catalog(cfg.PROFILES_PATH)
    app.state.provider = None
    if provider is not None:
        _wire(app, provider, source)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.APP_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.root_router, tags=["health"])
    app.include_router(profiles.router, tags=["profiles"])
    app.include_router(auth.router, tags=["auth"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("storefront.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
