"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Orbit happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, github_client_id -> GITHUB_CLIENT_ID).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning, production mode refuses to start
      without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Room tokens are
       HS256 JWTs signed with it; a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently
       invalidate every issued room token on restart.

  [M8] ADMIN_SECRET empty means the admin waitlist routes are disabled
       (every request gets 401), never open.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, directory/, or storage/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("orbit.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Base URL this service is reachable at; the CLI callback redirect URI is
    # derived from it.
    public_base_url: str = "http://localhost:8000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Object storage
    # ------------------------------------------------------------------

    # Any SQLAlchemy URL. Empty means the SQLite file next to storage/sql.py.
    blob_store_url: str = ""
    blob_key_prefix: str = "orbit"

    # ------------------------------------------------------------------
    # GitHub OAuth (empty string means the provider is not configured)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_scope: str = "read:user user:email repo"
    upstream_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # CLI authorization sessions
    # ------------------------------------------------------------------

    cli_session_ttl_seconds: int = 300
    cli_session_sweep_seconds: int = 60

    # ------------------------------------------------------------------
    # Browser sign-up (GitHub web flow onto the waitlist)
    # ------------------------------------------------------------------

    # Page the browser lands on after sign-up; receives ?status=&handle=.
    # Empty means {public_base_url}/orbit-success.
    signup_landing_url: str = ""
    signup_state_max_age_seconds: int = 600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Room tokens
    # ------------------------------------------------------------------

    room_token_expire_seconds: int = 3600
    room_refresh_token_expire_seconds: int = 7 * 24 * 3600
    room_token_issuer: str = "orbit-collab-auth"

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    admin_secret: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    cli_start_rate_limit: str = "20/minute"
    # The CLI polls the token endpoint until the callback lands, so this
    # limit has to leave room for one poll every couple of seconds.
    cli_token_rate_limit: str = "60/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Room tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Room tokens will not verify across restarts."
                )
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
    def cli_callback_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/v1/auth/cli/callback"

    @property
    def signup_callback_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/v1/orbit/auth/github/callback"

    @property
    def signup_redirect_url(self) -> str:
        return self.signup_landing_url or f"{self.public_base_url.rstrip('/')}/orbit-success"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
