"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the ledger service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="Inventory Balance Ledger",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ledger.db",
        description="SQLAlchemy compatible async database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    log_level: str = Field(default="INFO", description="Root log level.")
    access_control_allow_origin: str = Field(
        default="*",
        description="Comma separated CORS origins allowed to call the API.",
    )
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used to resolve the period of undated movements.",
    )
    conflict_retries: int = Field(
        default=3,
        ge=0,
        description="How many times a unit of work is retried after a stale period write.",
    )
    sqlite_busy_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds a SQLite writer waits for the database lock before giving up.",
    )
    default_item_units: str = Field(
        default="viên",
        description="Unit label given to items created by an import without one.",
    )
    data_start_row: int = Field(
        default=8,
        ge=0,
        description="Zero-based index of the first data row in report workbooks.",
    )
    low_stock_threshold: int = Field(default=100, ge=0)
    expiry_warning_days: int = Field(default=60, ge=0)

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
