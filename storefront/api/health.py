"""
Health endpoints.

Lightweight liveness and readiness checks without exposing secrets.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from storefront.core.database import check_connection, database_configured

logger = logging.getLogger("storefront")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz(request: Request):
    """Liveness check (no deps)."""
    source = getattr(request.app.state, "entitlement_source", None)
    return {"status": "ok", "entitlement_source": getattr(source, "name", None)}


@root_router.get("/readyz")
def readyz():
    """Readiness check: replay ledger connectivity when a database is configured."""
    if not database_configured():
        return {"status": "ok", "ledger": "memory"}

    if not check_connection():
        logger.error("[readyz] replay ledger database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok", "ledger": "database"}
