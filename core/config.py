"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for teamauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY signs every access and refresh token. Shorter than 32 chars is
  rejected outright; missing outside DEBUG is a hard startup failure so a
  restart never silently invalidates every issued token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("teamauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'teamauth.db'}"

_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # "prod" hides the interactive API docs.
    mode: str = "dev"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 30 * _DAY
    refresh_token_ttl_seconds: int = 30 * _DAY
    federated_refresh_token_ttl_seconds: int = 7 * _DAY
    # Clients may ask for an access token without an exp claim. Turning this
    # off makes is_long_live_token fall back to the normal lifetime.
    long_lived_tokens_enabled: bool = True

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    password_reset_ttl_seconds: int = 60 * 60
    password_reset_token_bytes: int = 128
    # {email} and {token} are substituted (URL-encoded) into the link.
    password_reset_url: str = "http://localhost:3000/reset-password?email={email}&token={token}"

    # ------------------------------------------------------------------
    # Mailgun (empty domain or key = log-only notifier)
    # ------------------------------------------------------------------

    mailgun_domain: str = ""
    mailgun_api_key: str = ""
    mailgun_sender: str = "no-reply@localhost"
    mailgun_base_url: str = "https://api.mailgun.net/v3"
    mailgun_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Federated login (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    line_client_id: str = ""
    line_client_secret: str = ""

    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"
    # Signs the session cookie that carries the OAuth state between redirect
    # and callback. Falls back to secret_key when empty.
    session_secret: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    login_rate_limit: str = "10/minute"
    password_reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Issued tokens will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def mailgun_enabled(self) -> bool:
        return bool(self.mailgun_domain and self.mailgun_api_key)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
