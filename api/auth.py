"""
Shared-token guard for the mutating mode endpoints.

Reads (/api/mode, /capsule, /audit, /stream) are always open. Force, unpin,
evaluate and scenario load need the token in MODEOS_API_TOKEN, presented as
``Authorization: Bearer``, an ``X-API-Token`` header or an ``api_token``
query parameter. With the variable unset the guard lets everything through;
the server logs that once at startup.
"""

import logging
import os
import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

TOKEN_ENV = "MODEOS_API_TOKEN"
AUTH_DISABLED = "auth_disabled"

bearer_scheme = HTTPBearer(auto_error=False)


def configured_token() -> str | None:
    return os.environ.get(TOKEN_ENV) or None


def is_auth_enabled() -> bool:
    return configured_token() is not None


def presented_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None = None
) -> str | None:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.headers.get("X-API-Token") or request.query_params.get("api_token") or None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Return the accepted token, or AUTH_DISABLED when no token is configured."""
    expected = configured_token()
    if expected is None:
        return AUTH_DISABLED

    token = presented_token(request, credentials)
    if token is None:
        logger.warning("Rejected %s %s: no token", request.method, request.url.path)
        raise _unauthorized("Authentication required. Provide Bearer token in Authorization header.")
    if not secrets.compare_digest(token, expected):
        logger.warning("Rejected %s %s: wrong token", request.method, request.url.path)
        raise _unauthorized("Invalid authentication token.")
    return token
