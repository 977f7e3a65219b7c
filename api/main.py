"""
api/main.py -- FastAPI application entry point for CredGate.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- method, path, status, latency per request

Lifespan builds every collaborator once and hangs it on app.state:
  settings, credential_store, hasher, credentials (CredentialManager),
  keys (KeyRingHolder), tokens (TokenIssuer), auth_service (AuthService).
Nothing in auth/ reads configuration or module globals on its own.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.profile import router as profile_router
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialManager
from auth.errors import AuthError, RateLimited, TokenError
from auth.hashing import SecretHasher
from auth.policy import SecretPolicy
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import KeyRingHolder, TokenIssuer
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build collaborators on startup; dispose of the DB engine on shutdown.

    Startup order follows the dependency graph: store and hasher first,
    then the manager that needs both, then the key ring and issuer, then the
    service that needs the manager and issuer.
    """
    settings = get_settings()
    logger.info("CredGate API starting up")
    app.state.settings = settings
    app.state.credential_store = CredentialStore(settings.database_url, timeout=settings.storage_timeout_seconds)
    app.state.hasher = SecretHasher.from_settings(settings)
    app.state.credentials = CredentialManager(
        app.state.credential_store,
        app.state.hasher,
        SecretPolicy.from_settings(settings),
    )
    app.state.keys = KeyRingHolder.from_settings(settings)
    app.state.tokens = TokenIssuer(app.state.keys, ttl_seconds=settings.token_expire_seconds)
    app.state.auth_service = AuthService(app.state.credentials, app.state.tokens)
    logger.info(
        "Auth initialized (bcrypt_rounds=%d, token_ttl=%ds, key_id=%s)",
        settings.bcrypt_rounds,
        settings.token_expire_seconds,
        settings.secret_key_id,
    )

    yield

    app.state.credential_store.close()
    logger.info("CredGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CredGate API",
    description="Registration, password login, and bearer-token access control.",
    version=_settings.version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any credential-lifecycle error.

    Token errors of every kind collapse to 401 unauthenticated -- never a
    500 -- so the error channel does not reveal why a token was refused.
    """
    if isinstance(exc, TokenError):
        exc = TokenError()
    if exc.status_code >= 500 and exc.code == "internal_error":
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail),
        ).model_dump(exclude_none=True),
    )
    response.headers["Cache-Control"] = "no-store"
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    err = RateLimited(detail=str(exc.detail))
    response = JSONResponse(
        status_code=err.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=err.code, message=err.message, detail=err.detail),
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the body or query params fail validation.

    Only field locations and error types are echoed -- never the input values,
    which may be passwords.
    """
    fields = [{"loc": list(e.get("loc", ())), "type": e.get("type", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit and no auth -- load balancers call it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    store: CredentialStore = request.app.state.credential_store
    db_ok = store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=request.app.state.settings.version,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
