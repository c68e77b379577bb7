"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for checkout and billing configuration.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: CHECKOUT__FORCE_AUTO_RENEW=false
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("dotmac-commerce", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full database URL")
        pool_pre_ping: bool = Field(True, description="Test connections before use")
        echo: bool = Field(False, description="Echo SQL statements")

        @property
        def sqlalchemy_url(self) -> str:
            """Build SQLAlchemy database URL."""
            if self.url:
                return self.url
            return "sqlite:///./dotmac_commerce.sqlite"

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_correlation_ids: bool = Field(True, description="Enable correlation IDs")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Checkout Configuration
    # ============================================================

    class CheckoutSettings(BaseModel):
        """Checkout behaviour switches."""

        company_name: str = Field("DotMac", description="Prefix used in cart descriptors")
        force_auto_renew: bool = Field(
            True, description="Ignore the customer auto-renew choice and always renew"
        )
        allow_trial_without_payment_method: bool = Field(
            False, description="Let trial carts skip payment method collection"
        )
        retry_allowed_statuses: list[str] = Field(
            default_factory=lambda: ["pending"],
            description="Payment statuses that may be recovered by a retry cart",
        )
        enable_email_verification: str = Field(
            "free_only", description="Email verification policy (never, always, free_only)"
        )

    checkout: CheckoutSettings = CheckoutSettings()  # type: ignore[call-arg]

    class TaxSettings(BaseModel):
        """Tax collection configuration."""

        enable_tax_collection: bool = Field(False, description="Collect taxes on checkout")
        inclusive_tax: bool = Field(False, description="Catalog prices already include tax")

    tax: TaxSettings = TaxSettings()  # type: ignore[call-arg]

    class CurrencySettings(BaseModel):
        """Currency configuration - single currency per cart."""

        default_currency: str = Field("USD", description="Default currency code")
        currency_decimal_places: int = Field(2, description="Number of decimal places")

    currency: CurrencySettings = CurrencySettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
