"""Process-wide settings for the ingestion engine, read from env and .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url


class Settings(BaseSettings):
    """
    Engine configuration.

    Every field can be overridden by an environment variable of the same
    name. A ``.env`` file in the working directory is read as well; unknown
    keys in it are ignored.
    """

    # -------------------------------------------------------------------------
    # RUNTIME
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    # -------------------------------------------------------------------------
    # STORAGE
    # -------------------------------------------------------------------------
    # Without a URL the engine keeps everything in memory.
    DATABASE_URL: str | None = None
    DB_POOL_MAX_CONN: int = 10

    # -------------------------------------------------------------------------
    # CATEGORIZATION & MODERATION
    # -------------------------------------------------------------------------
    OPENAI_API_KEY: SecretStr | None = None
    ANTHROPIC_API_KEY: SecretStr | None = None
    CATEGORIZER_ENABLED: bool = True
    CATEGORIZER_PROVIDER: str = "openai"
    CATEGORIZER_MODEL: str | None = None
    MODERATION_ENABLED: bool = True

    # -------------------------------------------------------------------------
    # PUBLISH POLICY
    # -------------------------------------------------------------------------
    PUBLISH_THRESHOLD: int = Field(default=80, ge=0, le=100)
    DRAFT_THRESHOLD: int = Field(default=50, ge=0, le=100)

    # -------------------------------------------------------------------------
    # RUN CONTROL
    # -------------------------------------------------------------------------
    RUN_TIMEOUT_SECONDS: float = Field(default=300.0, gt=0)
    MAX_CONCURRENT_SOURCES: int = Field(default=1, ge=1)
    PROGRESS_POLL_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)

    # -------------------------------------------------------------------------
    # SOURCES
    # -------------------------------------------------------------------------
    BASE_DIR: Path = Path(__file__).resolve().parent
    SOURCES_CONFIG_PATH: Path = BASE_DIR / "sources.yaml"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.DRAFT_THRESHOLD > self.PUBLISH_THRESHOLD:
            raise ValueError(
                f"DRAFT_THRESHOLD ({self.DRAFT_THRESHOLD}) must not exceed "
                f"PUBLISH_THRESHOLD ({self.PUBLISH_THRESHOLD})"
            )
        return self

    @property
    def uses_database(self) -> bool:
        return bool(self.DATABASE_URL)

    def get_psycopg2_params(self) -> dict:
        """
        Split DATABASE_URL into keyword arguments for ``psycopg2.connect``.

        Percent-encoded credentials are decoded by ``make_url``.

        Raises
        ------
        RuntimeError
            When no DATABASE_URL is configured.
        """
        if not self.uses_database:
            raise RuntimeError("DATABASE_URL is not configured")
        parsed = make_url(self.DATABASE_URL)
        params = dict(
            host=parsed.host,
            port=parsed.port,
            dbname=parsed.database,
            user=parsed.username,
            password=parsed.password,
        )
        return params


@lru_cache
def get_settings() -> Settings:
    """Settings shared by the API, the CLI and the orchestrator."""
    return Settings()
