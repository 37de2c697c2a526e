"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for all billing service configuration.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

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
    For nested settings, use double underscore: BILLING__GRACE_PERIOD_DAYS=5
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

    app_name: str = Field("musterbook-billing", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")

    host: str = Field("0.0.0.0", description="Server bind address")
    port: int = Field(8000, description="Server port")
    api_prefix: str = Field("/api/v1", description="Prefix for all API routes")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full SQLAlchemy database URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("musterbook", description="Database name")
        username: str = Field("musterbook", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or console)")
        enable_correlation_ids: bool = Field(True, description="Enable correlation IDs")
        correlation_id_header: str = Field("X-Correlation-ID", description="Correlation ID header")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing Configuration
    # ============================================================

    class BillingSettings(BaseModel):
        """Subscription lifecycle configuration."""

        default_currency: str = Field("INR", description="Currency for seeded plans")
        default_plan_slug: str = Field("starter", description="Plan used when none is chosen")
        default_trial_days: int = Field(14, description="Trial length when a plan sets none")

        grace_period_days: int = Field(3, description="Days after period end before suspension")
        monthly_period_days: int = Field(30, description="Length of a monthly billing period")
        yearly_period_days: int = Field(365, description="Length of a yearly billing period")

        tax_rate: Decimal = Field(Decimal("0.18"), description="Fixed tax surcharge on invoices")
        invoice_number_attempts: int = Field(
            5, description="Invoice number generation attempts before giving up"
        )

        stale_order_hours: int = Field(
            24, description="Age after which unresolved orders are marked failed"
        )
        recent_payments_limit: int = Field(5, description="Payments shown on the summary")
        subscription_redirect: str = Field(
            "/dashboard/subscription", description="Client route for billing denials"
        )

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    # ============================================================
    # Payment Gateway
    # ============================================================

    class GatewaySettings(BaseModel):
        """Payment gateway (Razorpay-compatible) configuration."""

        base_url: str = Field("https://api.razorpay.com/v1", description="Gateway API base URL")
        key_id: str = Field("", description="Public key id (safe to expose to clients)")
        key_secret: str = Field("", description="API secret, also signs checkout callbacks")
        webhook_secret: str = Field("", description="Secret used to sign webhook deliveries")
        timeout_seconds: float = Field(15.0, description="Outbound request timeout")
        signature_header: str = Field(
            "X-Razorpay-Signature", description="Header carrying the webhook signature"
        )

    gateway: GatewaySettings = GatewaySettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    def validate_environment(cls, v: Any) -> Any:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TEST


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
