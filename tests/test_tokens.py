"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Coverage:
  - issue() -> verify() returns the same subject with exp = iat + ttl
  - Two tokens for the same identity in the same second differ (jti)
  - Expiry driven by the injected clock: valid at exp, expired one second later
  - Tampered payload / foreign key / unknown kid -> BadSignature
  - Garbage, alg=none, and structurally bad claims -> MalformedToken
  - Key rotation with and without keeping the previous key
"""

from __future__ import annotations

import base64
import json

import pytest
from jose import jwt

from auth.errors import BadSignature, MalformedToken, TokenExpired
from auth.tokens import ALGORITHM, KeyRingHolder, SigningKeyRing, TokenIssuer, generate_signing_key

TEST_KEY = "k" * 40
OTHER_KEY = "o" * 40


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def _forge(claims: dict, key: str = TEST_KEY, kid: str | None = "k1") -> str:
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(claims, key, algorithm=ALGORITHM, headers=headers)


class TestIssueVerify:
    def test_round_trip(self, issuer: TokenIssuer, clock) -> None:
        issued = issuer.issue("alice@example.com")
        principal = issuer.verify(issued.access_token)
        assert principal.subject == "alice@example.com"
        assert principal.key_id == "k1"
        assert principal.expires_at == issued.expires_at
        assert (principal.expires_at - principal.issued_at).total_seconds() == 3600
        assert issued.expires_in == 3600
        assert issued.token_type == "bearer"

    def test_same_second_tokens_differ(self, issuer: TokenIssuer) -> None:
        a = issuer.issue("alice")
        b = issuer.issue("alice")
        assert a.access_token != b.access_token
        assert issuer.verify(a.access_token).token_id != issuer.verify(b.access_token).token_id

    def test_header_carries_kid(self, issuer: TokenIssuer) -> None:
        token = issuer.issue("alice").access_token
        assert jwt.get_unverified_header(token)["kid"] == "k1"

    def test_ttl_must_be_positive(self, keys: KeyRingHolder) -> None:
        with pytest.raises(ValueError):
            TokenIssuer(keys, ttl_seconds=0)


class TestExpiry:
    def test_valid_at_exact_expiry(self, issuer: TokenIssuer, clock) -> None:
        token = issuer.issue("alice").access_token
        clock.advance(3600)
        assert issuer.verify(token).subject == "alice"

    def test_expired_one_second_later(self, issuer: TokenIssuer, clock) -> None:
        token = issuer.issue("alice").access_token
        clock.advance(3601)
        with pytest.raises(TokenExpired):
            issuer.verify(token)

    def test_one_second_ttl(self, keys: KeyRingHolder, clock) -> None:
        short = TokenIssuer(keys, ttl_seconds=1, clock=clock)
        token = short.issue("alice").access_token
        assert short.verify(token).subject == "alice"
        clock.advance(1.5)
        with pytest.raises(TokenExpired):
            short.verify(token)

    def test_bad_signature_wins_over_expiry(self, issuer: TokenIssuer, clock) -> None:
        """An expired token signed with a foreign key is a signature failure."""
        iat = int(clock().timestamp())
        token = _forge({"sub": "alice", "iat": iat, "exp": iat + 10, "jti": "x"}, key=OTHER_KEY)
        clock.advance(100)
        with pytest.raises(BadSignature):
            issuer.verify(token)


class TestRejection:
    def test_tampered_payload(self, issuer: TokenIssuer) -> None:
        header, payload, signature = issuer.issue("alice").access_token.split(".")
        claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
        claims["sub"] = "mallory"
        with pytest.raises(BadSignature):
            issuer.verify(".".join([header, _b64(claims), signature]))

    def test_foreign_key(self, issuer: TokenIssuer, clock) -> None:
        iat = int(clock().timestamp())
        token = _forge({"sub": "alice", "iat": iat, "exp": iat + 60, "jti": "x"}, key=OTHER_KEY)
        with pytest.raises(BadSignature):
            issuer.verify(token)

    def test_unknown_kid(self, issuer: TokenIssuer, clock) -> None:
        iat = int(clock().timestamp())
        token = _forge({"sub": "alice", "iat": iat, "exp": iat + 60, "jti": "x"}, kid="nope")
        with pytest.raises(BadSignature):
            issuer.verify(token)

    def test_missing_kid_uses_current_key(self, issuer: TokenIssuer, clock) -> None:
        iat = int(clock().timestamp())
        token = _forge({"sub": "alice", "iat": iat, "exp": iat + 60, "jti": "x"}, kid=None)
        assert issuer.verify(token).subject == "alice"

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c", "a.b", "...."])
    def test_garbage(self, issuer: TokenIssuer, garbage: str) -> None:
        with pytest.raises(MalformedToken):
            issuer.verify(garbage)

    def test_non_string(self, issuer: TokenIssuer) -> None:
        with pytest.raises(MalformedToken):
            issuer.verify(None)  # type: ignore[arg-type]

    def test_alg_none(self, issuer: TokenIssuer, clock) -> None:
        iat = int(clock().timestamp())
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'sub': 'alice', 'iat': iat, 'exp': iat + 60})}."
        with pytest.raises(MalformedToken):
            issuer.verify(token)

    @pytest.mark.parametrize(
        "claims",
        [
            {"iat": 0, "exp": 60},
            {"sub": "", "iat": 0, "exp": 60},
            {"sub": "alice", "iat": "0", "exp": 60},
            {"sub": "alice", "iat": 0},
            {"sub": "alice", "iat": 60, "exp": 60},
            {"sub": "alice", "iat": True, "exp": 60},
        ],
    )
    def test_bad_claims(self, issuer: TokenIssuer, claims: dict) -> None:
        with pytest.raises(MalformedToken):
            issuer.verify(_forge(claims))


class TestRotation:
    def test_rotation_drops_old_key(self, keys: KeyRingHolder, issuer: TokenIssuer) -> None:
        old = issuer.issue("alice").access_token
        keys.rotate("k2", OTHER_KEY)
        with pytest.raises(BadSignature):
            issuer.verify(old)
        fresh = issuer.issue("alice").access_token
        assert jwt.get_unverified_header(fresh)["kid"] == "k2"
        assert issuer.verify(fresh).key_id == "k2"

    def test_rotation_keeping_previous(self, keys: KeyRingHolder, issuer: TokenIssuer) -> None:
        old = issuer.issue("alice").access_token
        keys.rotate("k2", OTHER_KEY, keep_previous=True)
        principal = issuer.verify(old)
        assert principal.subject == "alice"
        assert principal.key_id == "k1"

    def test_second_rotation_without_keep_drops_all(self, keys: KeyRingHolder, issuer: TokenIssuer) -> None:
        old = issuer.issue("alice").access_token
        keys.rotate("k2", OTHER_KEY, keep_previous=True)
        keys.rotate("k3", generate_signing_key())
        with pytest.raises(BadSignature):
            issuer.verify(old)

    def test_reused_kid_rejected(self, keys: KeyRingHolder) -> None:
        with pytest.raises(ValueError):
            keys.rotate("k1", OTHER_KEY)

    def test_ring_is_immutable(self, keys: KeyRingHolder) -> None:
        ring = keys.rotate("k2", OTHER_KEY, keep_previous=True)
        with pytest.raises(TypeError):
            ring.previous["k9"] = "x"  # type: ignore[index]

    def test_from_settings(self) -> None:
        class _S:
            secret_key = TEST_KEY
            secret_key_id = "main"
            previous_secret_keys = {"old": OTHER_KEY}

        holder = KeyRingHolder.from_settings(_S())
        assert holder.ring.current_kid == "main"
        assert holder.ring.key_for("old") == OTHER_KEY
        assert holder.ring.key_for("gone") is None


def test_generate_signing_key() -> None:
    key = generate_signing_key()
    assert len(key) == 64
    assert key != generate_signing_key()


def test_ring_constructor() -> None:
    ring = SigningKeyRing(current_kid="k1", current_key=TEST_KEY)
    assert ring.key_for(None) == TEST_KEY
    assert TEST_KEY not in repr(ring)
