"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token access control.

The token is read from exactly one place: the Authorization: Bearer <token>
header. There is no cookie fallback.

get_current_principal() verifies the token with the TokenIssuer on
app.state and attaches the resulting Principal to request.state.principal.
It never reads the credential store -- the signed claims are the whole
answer, which keeps the hot path storage-independent.

Every failure (missing header, wrong scheme, malformed token, bad signature,
expired) is the same 401 "unauthenticated" on the wire. The specific reason
is logged at debug level only.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import TokenError, Unauthenticated
from auth.models import Principal
from auth.tokens import TokenIssuer

logger = logging.getLogger("credgate.auth")


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated()
    return token.strip()


def try_get_current_principal(request: Request) -> Principal | None:
    """Soft variant: return the verified Principal, or None on any failure."""
    tokens: TokenIssuer = request.app.state.tokens
    try:
        principal = tokens.verify(_bearer_token(request))
    except TokenError as exc:
        logger.debug("Token rejected on %s: %s", request.url.path, type(exc).__name__)
        return None
    request.state.principal = principal
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_current_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthenticated", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
