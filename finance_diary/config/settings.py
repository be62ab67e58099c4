"""
Configuration Management for Finance Diary

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the ledger engine (propagation horizon, debounce window,
recurring tag) and every storage key lives in one place and is validated
when first read.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger engine tunables."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    max_lookahead_years: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Years past the last populated year a balance may be carried into"
    )
    reconcile_debounce_ms: int = Field(
        default=300,
        ge=0,
        le=10_000,
        description="Window during which reconciliation requests coalesce"
    )
    recurring_tag: str = Field(
        default="🔄",
        min_length=1,
        max_length=8,
        description="Prefix marking transactions produced by a recurring rule"
    )
    recurring_months_ahead: int = Field(
        default=24,
        ge=1,
        le=120,
        description="How many periods ahead recurring rules are materialized"
    )


class StorageSettings(BaseSettings):
    """Key-value persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DIARY_STORAGE_",
        extra="ignore"
    )

    data_dir: Optional[str] = Field(
        default=None,
        description="Directory for the JSON file store (None = in-memory only)"
    )

    # Keys within the store
    financial_data_key: str = Field(
        default="financialData",
        description="Key of the derived ledger"
    )
    transactions_key: str = Field(
        default="transactions",
        description="Key of the transaction log"
    )
    recurring_key: str = Field(
        default="recurringTransactions",
        description="Key of the recurring rules"
    )
    audit_key: str = Field(
        default="auditLog",
        description="Key of the persisted audit trail"
    )
    audit_max_events: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Newest audit events kept in the persisted trail"
    )

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: Optional[str]) -> Optional[str]:
        """Warn if the data directory doesn't exist (it is created on first save)."""
        if v is not None and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Storage directory not found at {v}. "
                "It will be created on the first save."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the ones that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("ledger", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
