"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_credential is the mapper. Service and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(identity) is the race-safety backstop for registration. Two
  concurrent registrations of the same identity can both pass the
  service-level existence check; the second INSERT then fails here and is
  translated to DuplicateIdentity.

  There is deliberately no generic update(**fields) method. update_profile()
  only accepts non-secret columns and update_secret_hash() only accepts a
  digest. Nothing here can hash, and nothing here can write a plaintext.

Error translation:
  Raw driver exceptions never leave this module. Unique violations become
  DuplicateIdentity, lock/timeout errors become StorageTimeout, everything
  else becomes StorageUnavailable.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from auth.errors import DuplicateIdentity, StorageError, StorageTimeout, StorageUnavailable
from auth.models import UNCHANGED, Credential

logger = logging.getLogger("credgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(255), nullable=False, unique=True),  # normalized, lower-case
    Column("secret_hash", Text, nullable=False),  # bcrypt digest, never plaintext
    Column("display_name", String(100)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class Deadline:
    """Per-request time budget for storage work.

    Built once at the route boundary from STORAGE_TIMEOUT_SECONDS and passed
    down. check() is called before each storage round-trip and, in the
    credential manager, between hashing and persisting -- so a digest
    computed for a request that has already run out of time is discarded
    rather than written.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self) -> None:
        if self.expired:
            raise StorageTimeout()


def _check(deadline: Deadline | None) -> None:
    if deadline is not None:
        deadline.check()


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_TIMEOUT_MARKERS = ("locked", "timeout", "timed out", "busy")


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        if "unique" in str(exc.orig).lower():
            raise DuplicateIdentity() from exc
        logger.error("Integrity error during %s", operation)
        raise StorageUnavailable() from exc
    except OperationalError as exc:
        if any(marker in str(exc.orig).lower() for marker in _TIMEOUT_MARKERS):
            logger.warning("Storage timeout during %s", operation)
            raise StorageTimeout() from exc
        logger.error("Storage failure during %s: %s", operation, exc.orig)
        raise StorageUnavailable() from exc
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, type(exc).__name__)
        raise StorageUnavailable() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Credential records.

    Usage:
        store = CredentialStore("sqlite:///credgate.db", timeout=5.0)
        cred_id = store.insert(Credential(identity="alice@example.com", secret_hash=digest))
        cred = store.get_by_identity("alice@example.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            # Driver-level busy timeout: a locked DB raises "database is locked"
            # after this many seconds, which _translate_errors maps to StorageTimeout.
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
        self.timeout = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        with _translate_errors("schema creation"):
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_identity(self, identity: str, deadline: Deadline | None = None) -> Credential | None:
        """Look up a record by normalized identity. Callers normalize first."""
        _check(deadline)
        with _translate_errors("lookup"), self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.identity == identity)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def get_by_id(self, credential_id: int, deadline: Deadline | None = None) -> Credential | None:
        _check(deadline)
        with _translate_errors("lookup"), self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == credential_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def list_credentials(self, deadline: Deadline | None = None) -> list[Credential]:
        """Return all records ordered by identity."""
        _check(deadline)
        with _translate_errors("list"), self.engine.connect() as conn:
            rows = conn.execute(_credentials.select().order_by(_credentials.c.identity)).fetchall()
        return [_row_to_credential(r) for r in rows]

    def count(self) -> int:
        with _translate_errors("count"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_credentials)).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            self.count()
        except StorageError:
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, credential: Credential, deadline: Deadline | None = None) -> int:
        """Insert a new record and return its assigned ID.

        Raises DuplicateIdentity if the identity already exists (including
        the concurrent-registration race) and ValueError if secret_hash is
        empty -- a record without a digest must never reach the table.
        """
        if not credential.secret_hash:
            raise ValueError("secret_hash must be a non-empty digest")
        _check(deadline)
        now = _now_iso()
        with _translate_errors("insert"), self.engine.connect() as conn:
            result = conn.execute(
                _credentials.insert().values(
                    identity=credential.identity,
                    secret_hash=credential.secret_hash,
                    display_name=credential.display_name,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_secret_hash(self, credential_id: int, secret_hash: str, deadline: Deadline | None = None) -> bool:
        """Replace the stored digest. Returns False if the record is gone.

        Only called from CredentialManager after SecretHasher.hash().
        """
        if not secret_hash:
            raise ValueError("secret_hash must be a non-empty digest")
        _check(deadline)
        with _translate_errors("secret update"), self.engine.connect() as conn:
            result = conn.execute(
                _credentials.update()
                .where(_credentials.c.id == credential_id)
                .values(secret_hash=secret_hash, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, credential_id: int, display_name=UNCHANGED, deadline: Deadline | None = None) -> bool:
        """Update non-secret profile fields. Fields left as UNCHANGED are not written.

        Returns True if a row was updated, False if credential_id was not
        found or nothing was supplied.
        """
        values: dict = {}
        if display_name is not UNCHANGED:
            values["display_name"] = display_name
        if not values:
            return False
        values["updated_at"] = _now_iso()
        _check(deadline)
        with _translate_errors("profile update"), self.engine.connect() as conn:
            result = conn.execute(_credentials.update().where(_credentials.c.id == credential_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def touch_last_login(self, credential_id: int) -> None:
        """Stamp the current UTC time as last_login after a successful login."""
        with _translate_errors("last_login update"), self.engine.connect() as conn:
            conn.execute(_credentials.update().where(_credentials.c.id == credential_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        identity=row.identity,
        secret_hash=row.secret_hash,
        display_name=row.display_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
