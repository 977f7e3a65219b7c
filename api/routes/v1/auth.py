"""
api/routes/v1/auth.py -- Registration, login, and secret change endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; returns a token (auto-login)
  POST /api/v1/auth/login      -- password login; returns a token
  POST /api/v1/auth/password   -- change password (requires auth)
  GET  /api/v1/auth/me         -- identity asserted by the presented token

Security:
  [H2] /register and /login are rate-limited per client IP (REGISTER_RATE_LIMIT,
       LOGIN_RATE_LIMIT).
  [C1] AuthService.login() provides timing equalization -- use it, never
       inline a lookup + verify here.
  [M5] Cache-Control: no-store on every token-bearing response.

Handlers are plain def (not async) so bcrypt runs in FastAPI's threadpool
instead of blocking the event loop. AuthError subclasses propagate to the
handler in api/main.py, which renders the error envelope.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ChangePasswordRequest, CredentialsRequest, MeResponse, TokenResponse
from auth.dependencies import get_current_principal
from auth.models import IssuedToken, Principal
from auth.service import AuthService
from auth.store import Deadline
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register: public, rate-limited
# - POST /api/v1/auth/login:    public, rate-limited
# - POST /api/v1/auth/password: requires auth (get_current_principal)
# - GET  /api/v1/auth/me:       requires auth (get_current_principal)
router = APIRouter()

_settings = get_settings()


def _deadline(request: Request) -> Deadline:
    return Deadline(request.app.state.settings.storage_timeout_seconds)


def _token_response(issued: IssuedToken, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=TokenResponse(
            access_token=issued.access_token,
            token_type=issued.token_type,
            expires_in=issued.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)  # [H2] below @router so the registered endpoint is the limited wrapper
def register(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Create an account and return its first token.

    Errors: invalid_input (400), weak_secret (422), duplicate_identity (409).
    """
    service: AuthService = request.app.state.auth_service
    issued = service.register(body.identity, body.password, deadline=_deadline(request))
    return _token_response(issued, 201)


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Authenticate with identity and password; return a bearer token.

    Wrong identity and wrong password return the same invalid_credentials
    error so the response does not reveal whether an account exists.
    """
    service: AuthService = request.app.state.auth_service
    issued = service.login(body.identity, body.password, deadline=_deadline(request))
    return _token_response(issued, 200)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/password", status_code=204)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> Response:
    """Change the caller's password. Requires the current password.

    Existing tokens stay valid until they expire; there is no revocation list.
    """
    service: AuthService = request.app.state.auth_service
    service.change_secret(principal.subject, body.current_password, body.new_password, deadline=_deadline(request))
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the identity asserted by the token. No storage round-trip."""
    return MeResponse(
        identity=principal.subject,
        issued_at=principal.issued_at,
        expires_at=principal.expires_at,
    )
