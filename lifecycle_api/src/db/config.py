from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DRIVER = re.compile(r"^postgresql(\+\w+)?://")


class Settings(BaseSettings):
    """
    Database connection settings for the lifecycle store.

    Either POSTGRES_URL or the POSTGRES_USER / POSTGRES_PASSWORD / POSTGRES_DB
    triple must be set. Application-level settings live in src.core.settings.
    """

    POSTGRES_URL: Optional[str] = Field(default=None, description="Full PostgreSQL URL; wins over the parts below")
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432

    SQL_ECHO: bool = Field(default=False, description="Log every SQL statement")
    DB_POOL_SIZE: int = Field(default=5, ge=1, description="Persistent connections per worker")
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0, description="Extra connections under burst load")
    DB_POOL_TIMEOUT: float = Field(default=30.0, gt=0, description="Seconds to wait for a pooled connection")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.POSTGRES_URL:
            return self.POSTGRES_URL
        if not (self.POSTGRES_USER and self.POSTGRES_PASSWORD and self.POSTGRES_DB):
            raise ValueError(
                "Database configuration missing: set POSTGRES_URL or "
                "POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB"
            )
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def async_database_url(self) -> str:
        """database_url with the asyncpg driver, whatever driver it named."""
        return _DRIVER.sub("postgresql+asyncpg://", self.database_url)

    @property
    def sync_database_url(self) -> str:
        """Driverless URL, enough for Alembic offline SQL generation."""
        return _DRIVER.sub("postgresql://", self.database_url)


# PUBLIC_INTERFACE
@lru_cache
def get_settings() -> Settings:
    """Database settings, read once per process."""
    return Settings()
