"""Centralized settings management for campus event ingestion."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from CAMPUS_EVENTS_* environment variables and a
    .env file in the working directory. Only the trigger entry point reads
    these; the pipeline classes receive explicit config objects.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"

    # -------------------------------------------------------------------------
    # UPSTREAM
    # -------------------------------------------------------------------------
    DISCOVERY_API_URL: str | None = None
    DISCOVERY_API_KEY: SecretStr | None = None

    # -------------------------------------------------------------------------
    # DOWNSTREAM
    # -------------------------------------------------------------------------
    DATABASE_URL: str | None = Field(default=None, min_length=1)
    DATABASE_STATEMENT_TIMEOUT_MS: int = 5000

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    INGESTION_CONFIG_PATH: Path = Path(__file__).resolve().parent / "ingestion.yaml"

    model_config = SettingsConfigDict(
        env_prefix="CAMPUS_EVENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Uses sqlalchemy.make_url for robust parsing of complex connection strings.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).

        Raises
        ------
        ValueError
            If DATABASE_URL is not set.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")
        url = make_url(self.DATABASE_URL)
        params = {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }
        return {k: v for k, v in params.items() if v is not None}


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The singleton settings instance.
    """
    return Settings()
