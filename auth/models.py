"""
auth/models.py -- Domain dataclasses for credential entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; the only logic here is identity normalization, which
every layer must apply identically.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from auth.errors import InvalidInput

IDENTITY_MAX_LENGTH = 255

# Email or username: printable, no whitespace, no control characters.
_IDENTITY_RE = re.compile(r"^[^\s\x00-\x1f\x7f]+$")


class _Unchanged:
    """Sentinel for "this field is not part of the update"."""

    _instance: _Unchanged | None = None

    def __new__(cls) -> _Unchanged:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCHANGED"

    def __bool__(self) -> bool:
        return False


UNCHANGED = _Unchanged()


def normalize_identity(identity: str) -> str:
    """Strip and case-fold an identity. Raises InvalidInput on a bad shape.

    Applied before every lookup and every insert so "Alice@Example.com" and
    "alice@example.com" name the same record.
    """
    if not isinstance(identity, str):
        raise InvalidInput("Identity must be a string.")
    normalized = identity.strip().lower()
    if not normalized or len(normalized) > IDENTITY_MAX_LENGTH or _IDENTITY_RE.match(normalized) is None:
        raise InvalidInput("Identity must be 1-255 printable characters without spaces.")
    return normalized


@dataclass
class Credential:
    """The durable record of {identity, secret hash, metadata}.

    secret_hash is always a bcrypt digest produced by SecretHasher. It is
    excluded from repr() so a stray log line or traceback never prints it.
    """

    identity: str
    secret_hash: str
    id: int | None = None
    display_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    def __repr__(self) -> str:
        return f"Credential(id={self.id!r}, identity={self.identity!r})"


@dataclass(frozen=True)
class Principal:
    """The identity asserted by a verified token. Built from claims only."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
    key_id: str


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token plus the metadata the wire layer reports."""

    access_token: str
    expires_in: int
    expires_at: datetime
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
