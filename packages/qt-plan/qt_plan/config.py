"""Harness settings loaded from the environment (QT_PLAN_*) or a .env file."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .execution.factory import PostgresConfig


class Settings(BaseSettings):
    """Connection and capture defaults.

    A DSN, when set, takes precedence over the individual connection fields.
    """

    model_config = SettingsConfigDict(env_prefix="QT_PLAN_", env_file=".env", extra="ignore")

    # Database
    dsn: str = ""
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "postgres"
    user: str = "postgres"
    password: str = ""
    db_schema: str = "public"

    # Capture
    statement_timeout_ms: int = Field(default=30_000, ge=0)
    explain_format: str = Field(default="json", pattern="^(json|text)$")
    pool_size: int = Field(default=1, ge=1, le=64)
    max_workers: int = Field(default=1, ge=1, le=64)

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL|debug|info|warning|error|critical)$",
    )
    """Default CLI log level; -v and -q override it."""

    def postgres_config(self) -> PostgresConfig:
        """Build the connection config for these settings."""
        if self.dsn:
            config = PostgresConfig.from_dsn(self.dsn)
            config.schema = self.db_schema
        else:
            config = PostgresConfig(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                schema=self.db_schema,
            )
        config.pool_size = max(self.pool_size, self.max_workers)
        config.statement_timeout_ms = self.statement_timeout_ms
        return config


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
