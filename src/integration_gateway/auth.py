"""
Control-Plane Authentication and Request Correlation
====================================================

This module provides:
1. Admin API key authentication for the integration endpoints, which accept
   administrator-supplied base URLs and credentials
2. X-Request-ID propagation so every log line and error detail for one HTTP
   request carries the same correlation ID
3. Error details that never expose exception text or stack traces

Usage:
    from integration_gateway.auth import admin_api_key_auth

    router = APIRouter(dependencies=[Depends(admin_api_key_auth)])

Configuration:
    Environment variables:
    - ADMIN_API_KEYS: Comma-separated list of accepted admin keys
    - ADMIN_API_KEY: A single accepted admin key
    - ADMIN_AUTH_ENABLED: "false" turns the check off (local development only)

    With auth enabled and no key configured, every request is refused with
    403 (fail-closed).
"""

import hmac
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger(__name__)

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"
AUTHORIZATION_HEADER = "Authorization"

_DISABLED_VALUES = ("false", "0", "no", "off")


def get_request_id() -> Optional[str]:
    """Correlation ID of the request being handled, or None outside a request."""
    return _request_id_ctx.get()


def _configured_admin_keys() -> set[str]:
    """Admin keys from ADMIN_API_KEYS and ADMIN_API_KEY, blanks dropped."""
    raw = os.getenv("ADMIN_API_KEYS", "").split(",")
    raw.append(os.getenv("ADMIN_API_KEY", ""))
    return {key.strip() for key in raw if key.strip()}


def _admin_auth_enabled() -> bool:
    value = os.getenv("ADMIN_AUTH_ENABLED", "true").strip().lower()
    return value not in _DISABLED_VALUES


def _presented_key(request: Request) -> str:
    """Key from X-Admin-API-Key, falling back to an Authorization bearer token."""
    key = request.headers.get(ADMIN_API_KEY_HEADER, "").strip()
    if key:
        return key
    scheme, _, token = request.headers.get(AUTHORIZATION_HEADER, "").partition(" ")
    if scheme == "Bearer":
        return token.strip()
    return ""


def _key_matches(presented: str, accepted: set[str]) -> bool:
    # Constant-time comparison against every accepted key.
    matched = False
    for key in accepted:
        if hmac.compare_digest(presented.encode(), key.encode()):
            matched = True
    return matched


async def admin_api_key_auth(request: Request) -> dict:
    """
    FastAPI dependency guarding the integration endpoints.

    Returns:
        {"admin_key": <key>} when the request is authorized

    Raises:
        HTTPException 403: No admin keys configured (fail-closed)
        HTTPException 401: Key missing or not recognised
    """
    request_id = get_request_id() or "unknown"
    path = str(request.url.path)

    if not _admin_auth_enabled():
        logger.warning(
            "Admin auth is disabled (ADMIN_AUTH_ENABLED=false)",
            extra={"request_id": request_id, "path": path},
        )
        return {"admin_key": "__disabled__"}

    accepted = _configured_admin_keys()
    if not accepted:
        logger.error(
            "No ADMIN_API_KEYS configured; refusing control-plane request",
            extra={"request_id": request_id, "path": path},
        )
        raise create_admin_error_response(
            403,
            "control_plane_not_configured",
            "Control-plane access denied. Admin API keys not configured.",
            request_id,
        )

    presented = _presented_key(request)
    if not presented:
        logger.warning(
            "Admin API key missing", extra={"request_id": request_id, "path": path}
        )
        raise create_admin_error_response(
            401,
            "admin_key_required",
            f"Admin API key required. Provide via {ADMIN_API_KEY_HEADER} header.",
            request_id,
        )

    if not _key_matches(presented, accepted):
        logger.warning(
            "Admin API key rejected", extra={"request_id": request_id, "path": path}
        )
        raise create_admin_error_response(
            401, "invalid_admin_key", "Invalid admin API key.", request_id
        )

    return {"admin_key": presented}


def sanitize_error_response(
    error: Exception,
    request_id: Optional[str] = None,
    public_message: str = "An internal error occurred",
) -> dict:
    """
    Log an unexpected error in full and return a detail safe to show callers.

    Returns:
        {"error": "internal_error", "message": public_message, "request_id": ...}
    """
    req_id = request_id or get_request_id() or "unknown"
    logger.error(
        f"Unhandled error: {type(error).__name__}: {error}",
        extra={"request_id": req_id, "error_type": type(error).__name__},
        exc_info=error,
    )
    return {"error": "internal_error", "message": public_message, "request_id": req_id}


def create_admin_error_response(
    status_code: int,
    error_code: str,
    message: str,
    request_id: Optional[str] = None,
) -> HTTPException:
    """HTTPException carrying the standard {error, message, request_id} detail."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error_code,
            "message": message,
            "request_id": request_id or get_request_id() or "unknown",
        },
    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a correlation ID to every request.

    An incoming X-Request-ID is reused; otherwise a UUID4 is generated. The ID
    is available through get_request_id() while the request is handled and
    is echoed back in the response headers.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip() or str(
            uuid.uuid4()
        )
        token = _request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_id_ctx.reset(token)
