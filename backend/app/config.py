"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The deployment injects ``DB_HOST``, ``DB_PORT`` and ``DB_NAME`` as plain
    values and ``DB_USER`` / ``DB_PASSWORD`` from the generated credential.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Backend"
    environment: str = "development"
    debug: bool = False
    api_prefix: str = "/api"
    port: int = 3000

    # PostgreSQL
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "appdb"
    db_user: str = "postgres"
    db_password: str = ""
    # RDS presents a certificate we do not verify
    db_ssl: bool = True

    @property
    def database_url(self) -> URL:
        """SQLAlchemy URL for the asyncpg driver."""
        return URL.create(
            "postgresql+asyncpg",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
