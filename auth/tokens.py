"""
auth/tokens.py -- Stateless signed session tokens (JWT, HS256).

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (identity), iat, exp and a
       random jti so two tokens issued in the same second still differ. The
       header carries kid, naming the key generation that signed it.

  Verification is pure. It never touches the credential store, so gating a
       request costs one HMAC and a clock read. Failures are typed:
         MalformedToken -- not a parseable JWS, bad claims, disallowed alg
         BadSignature   -- no key in the ring verifies it (incl. revoked kid)
         TokenExpired   -- now > exp
       The access-control dependency collapses all three into 401.

  Key ring: SigningKeyRing is an immutable snapshot. KeyRingHolder.rotate()
       builds a new snapshot and swaps it in with one reference assignment,
       so a verifier sees either the old ring or the new ring, never a mix,
       and the request path takes no lock. A previous key keeps verifying
       only if it is explicitly kept in the allow-list (PREVIOUS_SECRET_KEYS
       or rotate(..., keep_previous=True)); otherwise its tokens fail with
       BadSignature immediately.

  Clock: injectable (Callable[[], datetime]) so expiry is testable without
       sleeping.

Layer rule: no imports from api/. Import from core/ is not needed -- the
signing keys and TTL are passed in by api/main.py's lifespan.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

from jose import jws, jwt
from jose.exceptions import JWSError, JWTError

from auth.errors import BadSignature, MalformedToken, TokenExpired
from auth.models import IssuedToken, Principal

logger = logging.getLogger("credgate.auth.tokens")

ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Signing keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningKeyRing:
    """Current signing key plus the explicitly accepted previous keys."""

    current_kid: str
    current_key: str = field(repr=False)
    previous: Mapping[str, str] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "previous", MappingProxyType(dict(self.previous)))

    def key_for(self, kid: str | None) -> str | None:
        """Return the verification key for kid, or None if kid is not accepted."""
        if kid is None or kid == self.current_kid:
            return self.current_key
        return self.previous.get(kid)


class KeyRingHolder:
    """Atomic reference to the active SigningKeyRing.

    Usage:
        holder = KeyRingHolder(SigningKeyRing("k1", key1))
        holder.rotate("k2", key2)                      # k1 tokens now BadSignature
        holder.rotate("k3", key3, keep_previous=True)  # k2 tokens still verify
    """

    def __init__(self, ring: SigningKeyRing) -> None:
        self._ring = ring

    @classmethod
    def from_settings(cls, settings) -> KeyRingHolder:
        return cls(
            SigningKeyRing(
                current_kid=settings.secret_key_id,
                current_key=settings.secret_key,
                previous=settings.previous_secret_keys,
            )
        )

    @property
    def ring(self) -> SigningKeyRing:
        return self._ring

    def rotate(self, new_kid: str, new_key: str, keep_previous: bool = False) -> SigningKeyRing:
        """Install a new current key. Old keys are dropped unless keep_previous."""
        old = self._ring
        if new_kid == old.current_kid or new_kid in old.previous:
            raise ValueError(f"key id {new_kid!r} is already in use")
        previous: dict[str, str] = {}
        if keep_previous:
            previous = dict(old.previous)
            previous[old.current_kid] = old.current_key
        ring = SigningKeyRing(current_kid=new_kid, current_key=new_key, previous=previous)
        self._ring = ring
        logger.info("Signing key rotated: %s -> %s (accepted previous: %s)", old.current_kid, new_kid, sorted(previous))
        return ring


# ---------------------------------------------------------------------------
# Issue / verify
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Create and verify signed, time-bounded identity tokens."""

    def __init__(self, keys: KeyRingHolder, ttl_seconds: int, clock: Clock = utc_now) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.keys = keys
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def issue(self, identity: str) -> IssuedToken:
        """Encode a signed JWT for identity. No storage write."""
        ring = self.keys.ring
        issued_at = int(self.clock().timestamp())
        expires_at = issued_at + self.ttl_seconds
        claims = {
            "sub": identity,
            "iat": issued_at,
            "exp": expires_at,
            "jti": secrets.token_urlsafe(16),
        }
        token = jwt.encode(claims, ring.current_key, algorithm=ALGORITHM, headers={"kid": ring.current_kid})
        return IssuedToken(
            access_token=token,
            expires_in=self.ttl_seconds,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def verify(self, token: str) -> Principal:
        """Verify signature and expiry; return the asserted Principal.

        Raises MalformedToken, BadSignature, or TokenExpired. Never returns a
        partially verified result.
        """
        if not isinstance(token, str) or not token:
            raise MalformedToken()
        try:
            header = jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc
        if header.get("alg") != ALGORITHM:
            raise MalformedToken()

        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            raise MalformedToken()
        ring = self.keys.ring
        key = ring.key_for(kid)
        if key is None:
            raise BadSignature()
        # Structure was validated above, so any JWSError here is a signature mismatch.
        try:
            jws.verify(token, key, algorithms=[ALGORITHM])
        except JWSError as exc:
            raise BadSignature() from exc

        subject, issued_at, expires_at, token_id = _validated_claims(claims)
        if self.clock().timestamp() > expires_at:
            raise TokenExpired()
        return Principal(
            subject=subject,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            token_id=token_id,
            key_id=kid or ring.current_kid,
        )


def _validated_claims(claims: dict) -> tuple[str, int, int, str]:
    subject = claims.get("sub")
    issued_at = claims.get("iat")
    expires_at = claims.get("exp")
    token_id = claims.get("jti", "")
    if not isinstance(subject, str) or not subject:
        raise MalformedToken()
    for value in (issued_at, expires_at):
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedToken()
    if expires_at <= issued_at:
        raise MalformedToken()
    if not isinstance(token_id, str):
        raise MalformedToken()
    return subject, issued_at, expires_at, token_id


def generate_signing_key() -> str:
    """Return a fresh 256-bit signing key as 64 hex chars."""
    return secrets.token_hex(32)