from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.view_mode import ViewMode


class AppSettings(BaseSettings):
    """
    Service-level settings read from the environment (and `.env`).

    Connection settings live in src.db.config.Settings.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Document Lifecycle API"
    APP_DESCRIPTION: str = (
        "Backend API for a multi-tenant industrial ERP. Drives purchasing, stock, "
        "sales, safety permit and maintenance documents through guarded, audited "
        "state transitions."
    )
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # CORS; origins accept a JSON array or a comma-separated string
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"])

    RUN_MIGRATIONS_ON_STARTUP: bool = Field(default=True, description="alembic upgrade head at startup")
    AUTO_SEED: bool = Field(default=False, description="Seed the default tenant after migrating")
    DEFAULT_TENANT_SLUG: str = "acme"

    JWT_SECRET_KEY: str = Field(default="change-me", description="HMAC secret for JWT signing")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    IDEMPOTENCY_TTL_HOURS: int = Field(default=24, ge=1, description="How long a completed key replays its result")
    SOD_LOOKBACK_DAYS: int = Field(default=30, ge=1, description="Window of ANY_DOCUMENT separation rules")
    DEFAULT_VIEW_MODE: str = Field(default=ViewMode.STANDARD.value, description="S (T1 only) or E (T1 + T2)")

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",")]
        return [origin for origin in (value or []) if origin] or ["*"]

    @field_validator("DEFAULT_VIEW_MODE")
    @classmethod
    def _known_view_mode(cls, value: str) -> str:
        mode = (value or ViewMode.STANDARD.value).upper()
        if mode not in {m.value for m in ViewMode}:
            raise ValueError("DEFAULT_VIEW_MODE must be 'S' or 'E'")
        return mode


# PUBLIC_INTERFACE
@lru_cache
def get_app_settings() -> AppSettings:
    """Process-wide settings, parsed once."""
    return AppSettings()
