"""
Auric PM - Configuration
========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Auric PM"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:1420", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./.auric/project.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # IMMEDIATE takes the write lock when the transaction starts, so a claim's
    # select and update can never interleave with another writer.
    SQLITE_BEGIN_MODE: Literal["DEFERRED", "IMMEDIATE", "EXCLUSIVE"] = "IMMEDIATE"

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    # ==========================================================================
    # MCP Tool Server
    # ==========================================================================
    MCP_SERVER_NAME: str = "auric-pm"

    # ==========================================================================
    # Status History
    # ==========================================================================
    HISTORY_SOURCE_API: str = "api"
    HISTORY_SOURCE_MCP: str = "mcp"
    HISTORY_SOURCE_SCHEDULER: str = "scheduler"

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
