"""
API request and response models for CredGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.

Every request model sets extra="forbid": unknown fields are rejected with
422 before anything reaches the hasher or the store. That is what stops a
"password" key sneaking into PATCH /profile.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import IDENTITY_MAX_LENGTH

# Character cap on secrets at the transport layer. The hasher enforces the
# byte cap (MAX_SECRET_BYTES); this only stops absurd bodies early.
_SECRET_MAX_CHARS = 255

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Body for POST /auth/register and POST /auth/login."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=False)

    identity: str = Field(min_length=1, max_length=IDENTITY_MAX_LENGTH, description="Email address or username.")
    password: str = Field(min_length=1, max_length=_SECRET_MAX_CHARS)


class ChangePasswordRequest(BaseModel):
    """Body for POST /auth/password."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=_SECRET_MAX_CHARS)
    new_password: str = Field(min_length=1, max_length=_SECRET_MAX_CHARS)


class ProfileUpdate(BaseModel):
    """Body for PATCH /profile. Only non-secret fields exist here."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    display_name: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int


class MeResponse(BaseModel):
    """Identity as asserted by the token. Built from claims only."""

    identity: str
    issued_at: datetime
    expires_at: datetime


class ProfileResponse(BaseModel):
    identity: str
    display_name: Optional[str] = None
    created_at: str
    updated_at: str
    last_login: Optional[str] = None


class UserListResponse(BaseModel):
    count: int
    users: list[ProfileResponse]


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
