"""
auth/credentials.py -- Credential record lifecycle with a hashing guard.

Every write to a credential funnels through CredentialManager._apply(). It
takes new_secret=UNCHANGED by default and only calls SecretHasher.hash()
when a caller explicitly passes a plaintext. Exactly two public entry points
pass one: register() and change_secret(). update_profile() has no secret
parameter at all, so a display-name edit cannot re-hash the stored digest or
hash a field that was never a secret.

Deadline handling: hashing is the slow step. The deadline is checked again
after hashing and before the storage write, so a digest computed for a
request that ran out of time (or whose caller went away) is dropped.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import DuplicateIdentity, InvalidCredentials, StorageUnavailable
from auth.hashing import SecretHasher
from auth.models import UNCHANGED, Credential, normalize_identity
from auth.policy import SecretPolicy
from auth.store import CredentialStore, Deadline

logger = logging.getLogger("credgate.auth")


class CredentialManager:
    """Create, re-secret, and update credential records.

    Usage:
        manager = CredentialManager(store, SecretHasher(rounds=12), SecretPolicy())
        cred = manager.register("alice@example.com", "Sup3rSecret!")
        cred = manager.change_secret(cred, "Sup3rSecret!", "N3wSecret!!")
        cred = manager.update_profile(cred, display_name="Alice")
    """

    def __init__(self, store: CredentialStore, hasher: SecretHasher, policy: SecretPolicy) -> None:
        self.store = store
        self.hasher = hasher
        self.policy = policy

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, identity: str, deadline: Deadline | None = None) -> Credential | None:
        return self.store.get_by_identity(normalize_identity(identity), deadline=deadline)

    def list_credentials(self, deadline: Deadline | None = None) -> list[Credential]:
        return self.store.list_credentials(deadline=deadline)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(self, identity: str, plaintext: str, deadline: Deadline | None = None) -> Credential:
        """Create a record. Hashes exactly once, before persistence.

        Raises InvalidInput, WeakSecret, DuplicateIdentity, or a StorageError.
        """
        normalized = normalize_identity(identity)
        self.policy.check(plaintext)
        if self.store.get_by_identity(normalized, deadline=deadline) is not None:
            raise DuplicateIdentity()
        credential = Credential(identity=normalized, secret_hash="")
        return self._apply(credential, new_secret=plaintext, deadline=deadline)

    def change_secret(
        self,
        credential: Credential,
        old_plaintext: str,
        new_plaintext: str,
        deadline: Deadline | None = None,
    ) -> Credential:
        """Replace the secret after proving knowledge of the current one.

        Raises InvalidCredentials if old_plaintext does not verify, WeakSecret
        if new_plaintext fails the policy.
        """
        if not self.hasher.verify(old_plaintext, credential.secret_hash):
            logger.info("Secret change rejected for credential id=%s", credential.id)
            raise InvalidCredentials()
        self.policy.check(new_plaintext)
        updated = self._apply(credential, new_secret=new_plaintext, deadline=deadline)
        logger.info("Secret changed for credential id=%s", credential.id)
        return updated

    def update_profile(self, credential: Credential, display_name=UNCHANGED, deadline: Deadline | None = None) -> Credential:
        """Update non-secret fields. Cannot reach the hasher."""
        return self._apply(credential, display_name=display_name, deadline=deadline)

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    def _apply(
        self,
        credential: Credential,
        *,
        new_secret=UNCHANGED,
        display_name=UNCHANGED,
        deadline: Deadline | None = None,
    ) -> Credential:
        secret_hash = UNCHANGED
        if new_secret is not UNCHANGED:
            secret_hash = self.hasher.hash(new_secret)
            if deadline is not None:
                deadline.check()

        if credential.id is None:
            if secret_hash is UNCHANGED:
                raise ValueError("a new credential requires a secret")
            credential.secret_hash = secret_hash
            credential_id = self.store.insert(credential, deadline=deadline)
            logger.info("Registered credential id=%s identity=%s", credential_id, credential.identity)
            return self._reload(credential_id)

        if secret_hash is not UNCHANGED:
            self.store.update_secret_hash(credential.id, secret_hash, deadline=deadline)
        if display_name is not UNCHANGED:
            self.store.update_profile(credential.id, display_name=display_name, deadline=deadline)
        return self._reload(credential.id)

    def _reload(self, credential_id: int) -> Credential:
        fresh = self.store.get_by_id(credential_id)
        if fresh is None:
            # Deleted between write and read-back.
            raise StorageUnavailable("Credential disappeared after write.")
        return fresh
