"""
auth/hashing.py -- bcrypt secret hasher.

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection feeds
  bcrypt a password longer than 72 bytes, which bcrypt 4.x+ rejects. Direct
  usage is simpler and has no compatibility shim.

  Each digest embeds the algorithm id ($2b$), the cost factor, and a fresh
  22-char salt from bcrypt.gensalt(), so two hashes of the same secret never
  match bit-for-bit. checkpw() re-derives with the embedded salt/cost and
  compares in constant time.

  Inputs are bounded by max_secret_bytes (<= 72). bcrypt ignores bytes past
  72, and an unbounded input would let a caller burn CPU on every request.

  The dummy digest enables timing equalization in login: an unknown identity
  still pays for exactly one checkpw() at the configured cost [C1].

Layer rule: no imports from api/. Hashing never holds a lock.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import InvalidInput, MalformedDigest

# $2a$/$2b$/$2y$ + two-digit cost + 22-char salt + 31-char checksum.
_DIGEST_RE = re.compile(r"^\$2[aby]\$(\d{2})\$[./A-Za-z0-9]{53}$")

_DUMMY_SECRET = b"credgate_timing_dummy"


class SecretHasher:
    """One-way salted transform of a plaintext secret plus its verifier.

    Usage:
        hasher = SecretHasher(rounds=12)
        digest = hasher.hash("Sup3rSecret!")
        hasher.verify("Sup3rSecret!", digest)   # True
    """

    def __init__(self, rounds: int = 12, max_secret_bytes: int = 72) -> None:
        self.rounds = rounds
        self.max_secret_bytes = max_secret_bytes
        # Computed once so the first unknown-identity login is not slower
        # than subsequent ones.
        self._dummy_digest = bcrypt.hashpw(_DUMMY_SECRET, bcrypt.gensalt(rounds=rounds))

    @classmethod
    def from_settings(cls, settings) -> SecretHasher:
        return cls(rounds=settings.bcrypt_rounds, max_secret_bytes=settings.max_secret_bytes)

    def _encode(self, plaintext: str) -> bytes:
        if not isinstance(plaintext, str) or not plaintext:
            raise InvalidInput("Password must not be empty.")
        raw = plaintext.encode("utf-8")
        if len(raw) > self.max_secret_bytes:
            raise InvalidInput(f"Password must be at most {self.max_secret_bytes} bytes.")
        return raw

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext. Raises InvalidInput on empty/over-long input."""
        raw = self._encode(plaintext)
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest.

        Mismatch is False, never an exception. An out-of-bounds plaintext is
        also False, after a dummy check so it costs the same as a real one.
        Raises MalformedDigest only when digest is not a bcrypt string.
        """
        if not isinstance(digest, str) or _DIGEST_RE.match(digest) is None:
            raise MalformedDigest()
        try:
            raw = self._encode(plaintext)
        except InvalidInput:
            self.dummy_verify()
            return False
        try:
            return bcrypt.checkpw(raw, digest.encode("ascii"))
        except ValueError as exc:
            raise MalformedDigest() from exc

    def dummy_verify(self, plaintext: str | None = None) -> bool:
        """Run one full checkpw() against the dummy digest and return False.

        Called for unknown identities so response time does not reveal
        whether an account exists [C1].
        """
        candidate = b"x"
        if isinstance(plaintext, str) and plaintext:
            candidate = plaintext.encode("utf-8")[: self.max_secret_bytes]
        bcrypt.checkpw(candidate, self._dummy_digest)
        return False

    def needs_rehash(self, digest: str) -> bool:
        """True when digest was produced with a cost other than the configured one."""
        match = _DIGEST_RE.match(digest or "")
        if match is None:
            raise MalformedDigest()
        return int(match.group(1)) != self.rounds
