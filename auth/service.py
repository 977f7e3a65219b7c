"""
auth/service.py -- Registration, login, and secret change orchestration.

Policy decisions:
  Registration auto-logs-in: register() returns a token for the new account.
  This is the one documented behavior; there is no flag for it.

  Login is enumeration-resistant [C1]. An unknown identity and a wrong
  password both:
    - run exactly one bcrypt check at the configured cost (dummy_verify()
      for the unknown case, so response time does not reveal existence)
    - raise the same InvalidCredentials with the same message
  A malformed stored digest is logged by record id, pays one dummy check,
  and also surfaces as InvalidCredentials; the client never learns the
  account exists.

  No lockout counters live here. Abuse mitigation is the rate limiter in
  api/limiter.py, applied at the route.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.credentials import CredentialManager
from auth.errors import InvalidCredentials, InvalidInput, MalformedDigest
from auth.hashing import SecretHasher
from auth.models import IssuedToken, normalize_identity
from auth.store import CredentialStore, Deadline
from auth.tokens import TokenIssuer

logger = logging.getLogger("credgate.auth")


class AuthService:
    """Anonymous -> Authenticated(token) transitions. Failures leave no state behind."""

    def __init__(self, credentials: CredentialManager, tokens: TokenIssuer) -> None:
        self.credentials = credentials
        self.tokens = tokens

    @property
    def hasher(self) -> SecretHasher:
        return self.credentials.hasher

    @property
    def store(self) -> CredentialStore:
        return self.credentials.store

    def register(self, identity: str, plaintext: str, deadline: Deadline | None = None) -> IssuedToken:
        """Create the account and issue its first token.

        Raises InvalidInput, WeakSecret, DuplicateIdentity, or a StorageError.
        """
        credential = self.credentials.register(identity, plaintext, deadline=deadline)
        return self.tokens.issue(credential.identity)

    def login(self, identity: str, plaintext: str, deadline: Deadline | None = None) -> IssuedToken:
        """Verify identity + secret and issue a token.

        Raises InvalidCredentials for every lookup-or-verify failure, or a
        StorageError when storage is slow or down.
        """
        try:
            normalized = normalize_identity(identity)
        except InvalidInput:
            self.hasher.dummy_verify(plaintext)
            raise InvalidCredentials() from None

        credential = self.store.get_by_identity(normalized, deadline=deadline)
        if credential is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.dummy_verify(plaintext)
            logger.info("Login failed")
            raise InvalidCredentials()

        try:
            verified = self.hasher.verify(plaintext, credential.secret_hash)
        except MalformedDigest:
            # Equalize timing with the unknown-identity path [C1]
            self.hasher.dummy_verify(plaintext)
            logger.error("Stored digest unreadable for credential id=%s", credential.id)
            raise InvalidCredentials() from None
        if not verified:
            logger.info("Login failed")
            raise InvalidCredentials()

        if deadline is not None:
            deadline.check()
        self.store.touch_last_login(credential.id)
        logger.info("Login succeeded for credential id=%s", credential.id)
        if self.hasher.needs_rehash(credential.secret_hash):
            logger.info("Credential id=%s uses an outdated cost factor; rehash on next secret change", credential.id)
        return self.tokens.issue(credential.identity)

    def change_secret(self, identity: str, old_plaintext: str, new_plaintext: str, deadline: Deadline | None = None) -> None:
        """Change the secret of an already-authenticated identity.

        Raises InvalidCredentials when the record is gone or old_plaintext is
        wrong, WeakSecret when the new secret fails the policy.
        """
        credential = self.credentials.get(identity, deadline=deadline)
        if credential is None:
            self.hasher.dummy_verify(old_plaintext)
            raise InvalidCredentials()
        try:
            self.credentials.change_secret(credential, old_plaintext, new_plaintext, deadline=deadline)
        except MalformedDigest:
            self.hasher.dummy_verify(old_plaintext)
            logger.error("Stored digest unreadable for credential id=%s", credential.id)
            raise InvalidCredentials() from None
