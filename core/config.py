"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for gatekeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- the host instantiates
Settings (or calls get_settings()) and passes it to AuthService.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET). Type coercion and
      validation are built in.

  @model_validator(mode="after"): cross-field checks on the two signing
      secrets once every field is resolved.

Security notes:
  Secrets shorter than 32 chars are rejected. HS256 signing relies on key
  entropy -- a short key weakens every token issued with it.

  Access and refresh tokens must be signed with different secrets. A leaked
  access secret must not let an attacker mint refresh tokens.

  In production mode (DEBUG not set or false), missing secrets are a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatekeeper.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Auth module settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments (with DEBUG=true) without a real .env file.
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
    database_url: str = "sqlite:///gatekeeper.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the validator below
    # either generates a dev secret or raises.
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 3600
    # Persist refresh tokens so they can be revoked and rotated on use.
    refresh_revocation_enabled: bool = True
    rotate_refresh_tokens: bool = True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_auth_enabled: bool = True
    session_ttl_seconds: int = 3600
    sliding_sessions: bool = True

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cookie_same_site: Literal["lax", "strict", "none"] = "lax"
    cookie_domain: Optional[str] = None

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_min_length: int = 8
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets and identical access/refresh secrets.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            if getattr(self, field):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field, secrets.token_hex(32))
            logger.warning("WARNING: Using auto-generated %s. Tokens will not persist across restarts.", field.upper())

        if len(self.access_token_secret) < _MIN_SECRET_LENGTH or len(self.refresh_token_secret) < _MIN_SECRET_LENGTH:
            raise ValueError(f"Token secrets must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        if self.cookie_same_site == "none" and not self.secure_cookies:
            raise ValueError("COOKIE_SAME_SITE=none requires SECURE_COOKIES=true.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
