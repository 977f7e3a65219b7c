"""
auth/errors.py -- Exception taxonomy for the credential lifecycle.

Every error raised by auth/ derives from AuthError and carries the three
things the HTTP layer needs to render it without inspecting the type:
  code        -- stable machine-readable string sent on the wire
  status_code -- HTTP status
  message     -- safe public text (never contains secrets or digests)

Internal distinctions (BadSignature vs TokenExpired, unknown identity vs
wrong password) exist so tests and logs can tell them apart. The wire layer
collapses them: every TokenError becomes 401 "unauthenticated" and login
failures are always InvalidCredentials.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all credential-lifecycle errors."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, detail: object = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Input / policy
# ---------------------------------------------------------------------------


class InvalidInput(AuthError):
    code = "invalid_input"
    status_code = 400
    message = "Malformed identity or secret."


class WeakSecret(AuthError):
    """The new secret fails the configured strength policy.

    detail holds the list of unmet rules, e.g. ["min_length", "digit"].
    Listing the rules is safe: they describe the policy, not any account.
    """

    code = "weak_secret"
    status_code = 422
    message = "Password does not meet the strength policy."


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------


class DuplicateIdentity(AuthError):
    code = "duplicate_identity"
    status_code = 409
    message = "An account with that identity already exists."


class InvalidCredentials(AuthError):
    """Lookup-or-verify failure. Unknown identity and wrong secret are merged."""

    code = "invalid_credentials"
    status_code = 401
    message = "Invalid identity or password."


class MalformedDigest(AuthError):
    """A stored digest is not a well-formed bcrypt string (corrupt storage)."""

    code = "internal_error"
    status_code = 500
    message = "Stored credential is unreadable."


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "unauthenticated"
    status_code = 401
    message = "Authentication required."


class MalformedToken(TokenError):
    pass


class BadSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class Unauthenticated(TokenError):
    """No token was presented."""


# ---------------------------------------------------------------------------
# Storage / abuse
# ---------------------------------------------------------------------------


class StorageError(AuthError):
    code = "unavailable"
    status_code = 503
    message = "Credential storage is unavailable."


class StorageTimeout(StorageError):
    code = "timeout"
    message = "Credential storage did not respond in time."


class StorageUnavailable(StorageError):
    pass


class RateLimited(AuthError):
    code = "rate_limited"
    status_code = 429
    message = "Too many requests."
