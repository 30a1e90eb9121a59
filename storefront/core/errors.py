"""Error normalization and handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from storefront.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UnauthenticatedError(AppError):
    """No credential (or an invalid one) for an action that needs one."""
    code = "unauthenticated"
    status_code = 401


class VerificationUnavailableError(AppError):
    """Verification service unreachable or erroring. Never shown to the viewer."""
    code = "verification_unavailable"
    status_code = 503


class CheckoutInitiationError(AppError):
    """Creating a checkout or portal session failed."""
    code = "checkout_failed"
    status_code = 502


class PaymentReconciliationError(AppError):
    """Payment went through per the return URL but the server could not confirm it."""
    code = "payment_reconciliation_failed"
    status_code = 502


class InvalidTokenUnlockError(AppError, ValueError):
    """Token unlock rejected before any state change."""
    code = "invalid_token_unlock"
    status_code = 422


class PricingFaultError(AppError):
    """A paid flow computed an amount below one minor currency unit."""
    code = "pricing_fault"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _carry_cookies(request: Request, response: JSONResponse) -> JSONResponse:
    """Copy Set-Cookie headers written by the failed route (e.g. a cleared credential)."""
    pending = getattr(request.state, "cookie_response", None)
    if pending is None:
        return response
    for key, value in pending.raw_headers:
        if key == b"set-cookie":
            response.headers.append("set-cookie", value.decode("latin-1"))
    return response


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("storefront")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = _carry_cookies(request, JSONResponse(status_code=exc.status_code, content=payload))
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("storefront")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = _carry_cookies(request, JSONResponse(status_code=exc.status_code, content=payload))
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("storefront")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
