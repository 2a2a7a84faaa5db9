"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the BLT API happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. A missing DATABASE_URL is fatal in production; in debug
      mode a local SQLite file stands in with a warning.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or tracker/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bltapi.config")

_DEV_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'blt_dev.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is enough).
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
    # Empty string is the sentinel for "not configured"; the validator either
    # substitutes the dev database or refuses to start.
    database_url: str = ""
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    # Comma-separated origins. "*" allows any origin.
    allowed_origins: str = "*"

    # ------------------------------------------------------------------
    # Rate limiting (admission control)
    # ------------------------------------------------------------------

    rate_limit_max_requests: int = 100
    rate_limit_window_ms: int = 60_000

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()] or ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Enforce startup policy for the database URL and limiter values.

        Dev mode (DEBUG=true): fall back to a local SQLite file with a warning.
        Production mode: refuse to start without DATABASE_URL -- every read is
            served from the store of record, there is nothing to fall back to.
        """
        if not self.database_url:
            if self.debug:
                self.database_url = _DEV_DB_URL
                logger.warning("DATABASE_URL not set -- using local development database %s", _DEV_DB_URL)
            else:
                raise ValueError(
                    "DATABASE_URL is required in production mode. "
                    "Set DATABASE_URL in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.rate_limit_max_requests < 1:
            raise ValueError("RATE_LIMIT_MAX_REQUESTS must be at least 1.")
        if self.rate_limit_window_ms < 1:
            raise ValueError("RATE_LIMIT_WINDOW_MS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
