"""
api/routes/v1/users.py -- Read-only account directory for authenticated callers.

Routes:
  GET /api/v1/users              -- every account, ordered by identity (requires auth)
  GET /api/v1/users/{identity}   -- one account by identity (requires auth)

Responses reuse ProfileResponse, which has no digest field. The stored
secret_hash never leaves CredentialManager through these routes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ProfileResponse, UserListResponse
from api.routes.v1.profile import credential_to_response
from auth.credentials import CredentialManager
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.store import Deadline

# Auth policy: every route requires a valid bearer token.
router = APIRouter()


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, principal: Principal = Depends(get_current_principal)) -> UserListResponse:
    manager: CredentialManager = request.app.state.credentials
    deadline = Deadline(request.app.state.settings.storage_timeout_seconds)
    users = [credential_to_response(c) for c in manager.list_credentials(deadline=deadline)]
    return UserListResponse(count=len(users), users=users)


@router.get("/users/{identity}", response_model=ProfileResponse)
def get_user(
    identity: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> ProfileResponse:
    """Look up one account. The identity is normalized, so case does not matter."""
    manager: CredentialManager = request.app.state.credentials
    deadline = Deadline(request.app.state.settings.storage_timeout_seconds)
    credential = manager.get(identity, deadline=deadline)
    if credential is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return credential_to_response(credential)
