"""
Configuration Management for finledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backends exist and ensures
required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger defaults and business thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # Currency applied to accounts created without one
    default_currency_code: str = Field(
        default="INR",
        description="ISO code of the default account currency"
    )
    default_currency_symbol: str = Field(
        default="₹",
        description="Symbol of the default account currency"
    )
    default_currency_name: str = Field(
        default="Indian Rupee",
        description="Display name of the default account currency"
    )
    default_currency_locale: str = Field(
        default="en-IN",
        description="Locale used to format the default currency"
    )

    # Budgets
    budget_alert_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Percent of a budget after which it is near its limit"
    )

    # Recurring schedules
    upcoming_window_days: int = Field(
        default=30,
        ge=1,
        description="Default look-ahead for upcoming scheduled transactions"
    )
    execution_history_limit: int = Field(
        default=10,
        ge=1,
        description="How many materialized transactions to show per definition"
    )

    # Investments
    maturity_window_days: int = Field(
        default=90,
        ge=1,
        description="Look-ahead for upcoming investment maturities"
    )

    # Savings goals
    goal_category: str = Field(
        default="Savings Goals",
        description="Ledger category of goal contributions"
    )
    goal_source_account_type: str = Field(
        default="savings",
        description="Account type goal contributions are drawn from when none is given"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    accounts_sheet_name: str = Field(default="Accounts")
    budgets_sheet_name: str = Field(default="Budgets")
    transactions_sheet_name: str = Field(default="Transactions")
    transaction_logs_sheet_name: str = Field(default="TransactionLogs")
    recurring_sheet_name: str = Field(default="Recurring")
    investments_sheet_name: str = Field(default="Investments")
    goals_sheet_name: str = Field(default="Goals")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for activity audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
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

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which storage backend the component factory builds"
    )
    log_level: str = Field(
        default="INFO",
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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("ledger", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
