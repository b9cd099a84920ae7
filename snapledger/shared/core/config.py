from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"

SECURE_DB_SSL_MODES = ("require", "verify-ca", "verify-full")


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for snapledger.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "snapledger"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    ALLOW_TEST_DATABASE_URL: bool = False
    DB_SSL_MODE: str = "require"  # disable, require, verify-ca, verify-full
    DB_SSL_CA_CERT_PATH: Optional[str] = None
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False
    DB_USE_NULL_POOL: bool = False
    DB_EXTERNAL_POOLER: bool = False
    DB_SLOW_QUERY_THRESHOLD_SECONDS: float = 0.2

    # Ingestion
    INGESTION_RECONCILE_ENABLED: bool = True
    # Number of skipped-item errors kept on a run summary; the count is always exact.
    INGESTION_SKIPPED_ITEM_SAMPLE_SIZE: int = 20

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation orchestrator, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        self._validate_database_config()
        self._validate_ingestion_config()
        return self

    def _validate_database_config(self) -> None:
        """Validates database connectivity settings."""
        if self.is_production:
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL is required in production.")

            if self.DB_SSL_MODE not in SECURE_DB_SSL_MODES:
                raise ValueError(
                    f"SECURITY ERROR: DB_SSL_MODE must be secure in production (current: {self.DB_SSL_MODE})."
                )
            if self.DB_SSL_MODE in {"verify-ca", "verify-full"} and not self.DB_SSL_CA_CERT_PATH:
                raise ValueError(
                    "DB_SSL_CA_CERT_PATH is mandatory when DB_SSL_MODE is verify-ca or verify-full in production."
                )
            if self.DB_USE_NULL_POOL and not self.DB_EXTERNAL_POOLER:
                raise ValueError(
                    "DB_USE_NULL_POOL=true requires DB_EXTERNAL_POOLER=true in production."
                )

        if self.DB_SLOW_QUERY_THRESHOLD_SECONDS <= 0:
            raise ValueError("DB_SLOW_QUERY_THRESHOLD_SECONDS must be > 0.")

    def _validate_ingestion_config(self) -> None:
        if self.INGESTION_SKIPPED_ITEM_SAMPLE_SIZE < 0:
            raise ValueError("INGESTION_SKIPPED_ITEM_SAMPLE_SIZE must be >= 0.")

    @property
    def is_production(self) -> bool:
        """
        True only when ENVIRONMENT is explicitly set to 'production'.
        Staging/Development are NOT 'production'.
        """
        return self.ENVIRONMENT == ENV_PRODUCTION
