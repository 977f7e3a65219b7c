"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CredGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  [K1] Signing keys shorter than 32 chars are rejected outright, including
       every entry of PREVIOUS_SECRET_KEYS.

  [K2] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [H1] MAX_SECRET_BYTES may not exceed 72. bcrypt only reads the first 72
       bytes of its input, so a larger limit would accept secrets whose tail
       is silently ignored.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'credgate.db'}"

# bcrypt's own bounds for the log2 cost parameter.
BCRYPT_MIN_ROUNDS = 4
BCRYPT_MAX_ROUNDS = 31
BCRYPT_MAX_BYTES = 72

_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    version: str = "0.1.0"

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    secret_key_id: str = "k1"
    # Explicit dual-key allow-list used during rotation: {kid: key}.
    # Tokens signed with a key absent from this map fail with BadSignature.
    previous_secret_keys: dict[str, str] = Field(default_factory=dict)
    token_expire_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Secret hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=BCRYPT_MIN_ROUNDS, le=BCRYPT_MAX_ROUNDS)
    max_secret_bytes: int = Field(default=BCRYPT_MAX_BYTES, ge=1, le=BCRYPT_MAX_BYTES)

    # ------------------------------------------------------------------
    # Secret strength policy
    # ------------------------------------------------------------------

    password_min_length: int = Field(default=8, ge=1)
    password_require_upper: bool = True
    password_require_lower: bool = True
    password_require_digit: bool = True
    password_require_symbol: bool = False

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    storage_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost", "testserver"])
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost", "http://localhost:3000"])

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the SECRET_KEY policy [K1][K2].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < _MIN_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        for kid, key in self.previous_secret_keys.items():
            if len(key) < _MIN_KEY_LENGTH:
                raise ValueError(f"PREVIOUS_SECRET_KEYS[{kid!r}] must be at least {_MIN_KEY_LENGTH} characters.")
        if self.secret_key_id in self.previous_secret_keys:
            raise ValueError("SECRET_KEY_ID must not also appear in PREVIOUS_SECRET_KEYS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
