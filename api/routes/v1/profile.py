"""
api/routes/v1/profile.py -- Profile read/update for the authenticated caller.

Routes:
  GET   /api/v1/profile   -- caller's profile (requires auth)
  PATCH /api/v1/profile   -- update display_name (requires auth)

PATCH goes through CredentialManager.update_profile(), which has no secret
parameter. ProfileUpdate forbids extra fields, so a stray "password" key is
a 422, not a silent re-hash.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ProfileResponse, ProfileUpdate
from auth.credentials import CredentialManager
from auth.dependencies import get_current_principal
from auth.models import UNCHANGED, Credential, Principal
from auth.store import Deadline

router = APIRouter()


def _load(request: Request, principal: Principal, deadline: Deadline) -> Credential:
    manager: CredentialManager = request.app.state.credentials
    credential = manager.get(principal.subject, deadline=deadline)
    if credential is None:
        # Token outlived the account.
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return credential


@router.get("/profile", response_model=ProfileResponse)
def get_profile(request: Request, principal: Principal = Depends(get_current_principal)) -> ProfileResponse:
    deadline = Deadline(request.app.state.settings.storage_timeout_seconds)
    return credential_to_response(_load(request, principal, deadline))


@router.patch("/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProfileResponse:
    """Update non-secret profile fields. Omitted fields are left untouched."""
    deadline = Deadline(request.app.state.settings.storage_timeout_seconds)
    credential = _load(request, principal, deadline)
    if not body.model_fields_set:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    display_name = body.display_name if "display_name" in body.model_fields_set else UNCHANGED
    manager: CredentialManager = request.app.state.credentials
    updated = manager.update_profile(credential, display_name=display_name, deadline=deadline)
    return credential_to_response(updated)


def credential_to_response(credential: Credential) -> ProfileResponse:
    return ProfileResponse(
        identity=credential.identity,
        display_name=credential.display_name,
        created_at=credential.created_at or "",
        updated_at=credential.updated_at or "",
        last_login=credential.last_login,
    )
