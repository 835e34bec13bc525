"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TinyTasks happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. google_client_id -> GOOGLE_CLIENT_ID). Type coercion and validation
      are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Production mode refuses to start without the Google OAuth
      client; dev mode starts anyway with a warning so the gated API can be
      exercised with tokens minted from the CLI or tests.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or tasks/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tinytasks.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tinytasks.db'}"


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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Google OAuth (the single federated identity provider)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    # Must match the redirect URI registered in the Google Cloud console.
    google_redirect_uri: str = ""

    # Hosts a web client may ask to be redirected to after login. Empty means
    # any http(s) host is accepted.
    allowed_redirect_hosts: list[str] = []

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    callback_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_google_client(self) -> "Settings":
        """Require the Google OAuth client outside of dev mode.

        Dev mode (DEBUG=true): start with a warning. /auth/google will fail
            at the provider, but every other route works with tokens issued
            through main.py or test fixtures.

        Production mode: refuse to start. Without the client, no principal
            can ever log in, which is a deployment mistake worth failing on.
        """
        missing = [
            name
            for name in ("google_client_id", "google_client_secret", "google_redirect_uri")
            if not getattr(self, name)
        ]
        if missing:
            if self.debug:
                logger.warning("Google OAuth is not configured (%s). Federated login will fail.", ", ".join(missing))
            else:
                raise ValueError(
                    f"{', '.join(m.upper() for m in missing)} required in production mode. "
                    "Set them in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
