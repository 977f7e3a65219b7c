"""
tests/test_service.py -- Unit tests for auth/service.py (AuthService).

Coverage:
  - register() auto-logs-in: the returned token verifies to the new identity
  - login() happy path stamps last_login
  - Enumeration resistance: unknown identity and wrong password raise the
    same error with the same message, and both run exactly one bcrypt check
  - Corrupt stored digest -> InvalidCredentials, not a 500
  - change_secret(): old secret stops working, new one works, tokens issued
    before the change stay valid until expiry
"""

from __future__ import annotations

import bcrypt
import pytest

from auth.errors import DuplicateIdentity, InvalidCredentials, WeakSecret
from auth.hashing import SecretHasher
from auth.service import AuthService
from auth.store import CredentialStore

PASSWORD = "Sup3rSecret!"
NEW_PASSWORD = "N3wSecret!!"


@pytest.fixture
def checkpw_calls(monkeypatch) -> list[int]:
    """Count bcrypt.checkpw() invocations made through auth.hashing."""
    calls: list[int] = []
    real = bcrypt.checkpw

    def counting(password: bytes, hashed: bytes) -> bool:
        calls.append(1)
        return real(password, hashed)

    monkeypatch.setattr("auth.hashing.bcrypt.checkpw", counting)
    return calls


def _corrupt_digest(service: AuthService, identity: str) -> None:
    cred = service.store.get_by_identity(identity)
    with service.store.engine.connect() as conn:
        conn.exec_driver_sql("UPDATE credentials SET secret_hash = 'garbage' WHERE id = ?", (cred.id,))
        conn.commit()


class TestRegister:
    def test_exposes_collaborators(self, service: AuthService) -> None:
        assert isinstance(service.hasher, SecretHasher)
        assert isinstance(service.store, CredentialStore)
        assert service.hasher is service.credentials.hasher

    def test_register_returns_usable_token(self, service: AuthService) -> None:
        issued = service.register("Alice@Example.com", PASSWORD)
        assert service.tokens.verify(issued.access_token).subject == "alice@example.com"

    def test_register_duplicate(self, service: AuthService) -> None:
        service.register("alice", PASSWORD)
        with pytest.raises(DuplicateIdentity):
            service.register("alice", PASSWORD)

    def test_register_weak(self, service: AuthService) -> None:
        with pytest.raises(WeakSecret):
            service.register("alice", "weak")


class TestLogin:
    def test_login_success(self, service: AuthService) -> None:
        service.register("alice", PASSWORD)
        assert service.store.get_by_identity("alice").last_login is None
        issued = service.login("ALICE", PASSWORD)
        assert service.tokens.verify(issued.access_token).subject == "alice"
        assert service.store.get_by_identity("alice").last_login is not None

    def test_wrong_password(self, service: AuthService) -> None:
        service.register("alice", PASSWORD)
        with pytest.raises(InvalidCredentials):
            service.login("alice", "Wr0ngSecret")

    def test_unknown_and_wrong_are_indistinguishable(self, service: AuthService, checkpw_calls: list[int]) -> None:
        service.register("alice", PASSWORD)

        checkpw_calls.clear()
        with pytest.raises(InvalidCredentials) as unknown:
            service.login("nobody", PASSWORD)
        unknown_checks = len(checkpw_calls)

        checkpw_calls.clear()
        with pytest.raises(InvalidCredentials) as wrong:
            service.login("alice", "Wr0ngSecret")
        wrong_checks = len(checkpw_calls)

        assert unknown_checks == wrong_checks == 1
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code == "invalid_credentials"
        assert unknown.value.status_code == wrong.value.status_code == 401

    def test_malformed_identity_still_runs_bcrypt(self, service: AuthService, checkpw_calls: list[int]) -> None:
        with pytest.raises(InvalidCredentials):
            service.login("   ", PASSWORD)
        assert len(checkpw_calls) == 1

    def test_corrupt_digest_is_invalid_credentials(self, service: AuthService, checkpw_calls: list[int]) -> None:
        """A corrupt record costs the same single bcrypt check as an unknown identity."""
        service.register("alice", PASSWORD)
        _corrupt_digest(service, "alice")

        checkpw_calls.clear()
        with pytest.raises(InvalidCredentials):
            service.login("alice", PASSWORD)
        assert len(checkpw_calls) == 1

    def test_corrupt_digest_on_secret_change(self, service: AuthService, checkpw_calls: list[int]) -> None:
        service.register("alice", PASSWORD)
        _corrupt_digest(service, "alice")

        checkpw_calls.clear()
        with pytest.raises(InvalidCredentials):
            service.change_secret("alice", PASSWORD, NEW_PASSWORD)
        assert len(checkpw_calls) == 1


class TestChangeSecret:
    def test_change_secret(self, service: AuthService) -> None:
        before = service.register("alice", PASSWORD)
        service.change_secret("alice", PASSWORD, NEW_PASSWORD)

        with pytest.raises(InvalidCredentials):
            service.login("alice", PASSWORD)
        assert service.login("alice", NEW_PASSWORD).access_token

        # No revocation list: the earlier token is still valid until exp.
        assert service.tokens.verify(before.access_token).subject == "alice"

    def test_wrong_current_secret(self, service: AuthService) -> None:
        service.register("alice", PASSWORD)
        with pytest.raises(InvalidCredentials):
            service.change_secret("alice", "Wr0ngSecret", NEW_PASSWORD)
        assert service.login("alice", PASSWORD).access_token

    def test_account_gone(self, service: AuthService) -> None:
        with pytest.raises(InvalidCredentials):
            service.change_secret("ghost", PASSWORD, NEW_PASSWORD)
