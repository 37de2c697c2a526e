"""
Billing module configuration
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from musterbook.platform.settings import Settings, get_settings


class GatewayConfig(BaseModel):
    """Razorpay-compatible gateway configuration"""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field("https://api.razorpay.com/v1", description="Gateway API base URL")
    key_id: str = Field("", description="Public key id")
    key_secret: str = Field("", description="API secret used for basic auth and signatures")
    webhook_secret: str = Field("", description="Webhook signing secret")
    timeout_seconds: float = Field(15.0, gt=0, description="Outbound request timeout")
    signature_header: str = Field("X-Razorpay-Signature", description="Webhook signature header")

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)


class LifecycleConfig(BaseModel):
    """Subscription lifecycle timing and invoicing rules"""

    model_config = ConfigDict(frozen=True)

    grace_period_days: int = Field(3, ge=0, description="Days after period end before suspension")
    monthly_period_days: int = Field(30, gt=0, description="Monthly period length in days")
    yearly_period_days: int = Field(365, gt=0, description="Yearly period length in days")
    tax_rate: Decimal = Field(Decimal("0.18"), ge=0, description="Fixed invoice tax rate")
    invoice_number_attempts: int = Field(5, gt=0, description="Invoice number retries")
    stale_order_hours: int = Field(24, gt=0, description="Age of unresolved orders to expire")
    recent_payments_limit: int = Field(5, ge=0, description="Payments on the summary view")
    default_plan_slug: str = Field("starter", description="Plan for new trials")
    default_trial_days: int = Field(14, ge=0, description="Trial length fallback")
    default_currency: str = Field("INR", description="Currency for seeded plans")


class BillingConfig(BaseModel):
    """Complete billing configuration"""

    model_config = ConfigDict(frozen=True)

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BillingConfig":
        """Build billing configuration from application settings."""
        settings = settings or get_settings()
        return cls(
            gateway=GatewayConfig(**settings.gateway.model_dump()),
            lifecycle=LifecycleConfig(
                **settings.billing.model_dump(
                    exclude={"subscription_redirect"},
                )
            ),
        )


_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get the global billing configuration"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_settings()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set the global billing configuration (tests pass None to reset)"""
    global _billing_config
    _billing_config = config
