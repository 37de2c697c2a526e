"""
Pydantic schemas for the billing API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from musterbook.platform.billing.enums import (
    BillingCycle,
    InvoiceStatus,
    PaymentStatus,
    PlanChangeOutcome,
    SubscriptionStatus,
)

# ============================================================
# Plans
# ============================================================


class PlanCreateRequest(BaseModel):
    """Schema for creating a plan."""

    model_config = ConfigDict(str_strip_whitespace=True)

    slug: str = Field(min_length=1, max_length=50, description="Unique plan slug")
    name: str = Field(min_length=1, max_length=100, description="Display name")
    description: str | None = Field(None, description="Plan description")
    monthly_price: Decimal = Field(ge=0, description="Monthly price in major units")
    yearly_price: Decimal | None = Field(None, ge=0, description="Yearly price in major units")
    currency: str = Field("INR", min_length=3, max_length=3, description="ISO currency code")
    max_employees: int = Field(ge=-1, description="Seat ceiling, -1 for unlimited")
    trial_days: int = Field(14, ge=0, description="Trial length in days")
    features: list[str] = Field(default_factory=list, description="Marketing feature bullets")
    is_custom: bool = Field(False, description="Contact-sales plan, not self-serve")
    sort_order: int = Field(0, description="Display order")

    has_payroll: bool = False
    has_advanced_analytics: bool = False
    has_custom_integrations: bool = False
    has_priority_support: bool = False
    has_dedicated_manager: bool = False
    has_custom_workflows: bool = False
    has_sla: bool = False
    has_on_premise: bool = False


class PlanUpdateRequest(BaseModel):
    """Schema for updating a plan. Only supplied fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    monthly_price: Decimal | None = Field(None, ge=0)
    yearly_price: Decimal | None = Field(None, ge=0)
    max_employees: int | None = Field(None, ge=-1)
    trial_days: int | None = Field(None, ge=0)
    features: list[str] | None = None
    is_custom: bool | None = None
    sort_order: int | None = None

    has_payroll: bool | None = None
    has_advanced_analytics: bool | None = None
    has_custom_integrations: bool | None = None
    has_priority_support: bool | None = None
    has_dedicated_manager: bool | None = None
    has_custom_workflows: bool | None = None
    has_sla: bool | None = None
    has_on_premise: bool | None = None


class PlanResponse(BaseModel):
    """Schema for plan response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str
    description: str | None = None
    monthly_price: Decimal
    yearly_price: Decimal | None = None
    currency: str
    max_employees: int
    trial_days: int
    features: list[str] = Field(default_factory=list)
    is_custom: bool
    is_active: bool
    sort_order: int
    version: int

    has_payroll: bool
    has_advanced_analytics: bool
    has_custom_integrations: bool
    has_priority_support: bool
    has_dedicated_manager: bool
    has_custom_workflows: bool
    has_sla: bool
    has_on_premise: bool


# ============================================================
# Subscription
# ============================================================


class StartTrialRequest(BaseModel):
    """Schema for starting a trial at registration."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_slug: str | None = Field(None, description="Plan to trial, defaults to starter")


class SubscriptionResponse(BaseModel):
    """Schema for subscription response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    plan_id: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    auto_renew: bool
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    cancels_at_period_end: bool
    cancel_effective_at: datetime | None = None
    pending_plan_id: str | None = None
    pending_plan_effective_at: datetime | None = None


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str | None = None
    billing_cycle: BillingCycle | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_order_id: str
    gateway_payment_id: str | None = None
    method: str | None = None
    description: str | None = None
    error_code: str | None = None
    error_description: str | None = None
    created_at: datetime
    captured_at: datetime | None = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    payment_id: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    period_start: datetime
    period_end: datetime
    status: InvoiceStatus
    paid_at: datetime
    due_date: datetime


class UsageResponse(BaseModel):
    """Seat usage against the plan ceiling."""

    model_config = ConfigDict(from_attributes=True)

    employees: int
    max_employees: int
    percent_used: int
    features: dict[str, bool] = Field(default_factory=dict)


class PendingPlanChange(BaseModel):
    """A downgrade scheduled for the end of the current period."""

    model_config = ConfigDict(from_attributes=True)

    plan: PlanResponse
    effective_at: datetime | None = None


class SubscriptionSummaryResponse(BaseModel):
    """Current subscription view for the billing dashboard."""

    model_config = ConfigDict(from_attributes=True)

    subscription: SubscriptionResponse
    status: SubscriptionStatus
    plan: PlanResponse
    usage: UsageResponse
    days_remaining: int
    recent_payments: list[PaymentResponse] = Field(default_factory=list)
    pending_plan_change: PendingPlanChange | None = None


# ============================================================
# Checkout
# ============================================================


class CreateOrderRequest(BaseModel):
    """Schema for starting a checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_id: str = Field(min_length=1, description="Plan being purchased")
    billing_cycle: BillingCycle = Field(BillingCycle.MONTHLY, description="Billing cycle")


class CheckoutOrderResponse(BaseModel):
    """Gateway order handed to the client checkout widget."""

    order_id: str
    amount: int = Field(description="Amount in minor units")
    currency: str
    key_id: str
    plan_name: str
    billing_cycle: BillingCycle
    description: str


class VerifyPaymentRequest(BaseModel):
    """Schema for the synchronous checkout callback."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order_id: str = Field(min_length=1)
    payment_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    plan_id: str | None = None
    billing_cycle: BillingCycle | None = None


class PaymentVerificationResponse(BaseModel):
    """Result of a verified payment."""

    success: bool = True
    subscription_status: SubscriptionStatus
    plan: PlanResponse
    billing_cycle: BillingCycle
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    invoice_number: str | None = None
    already_processed: bool = False


# ============================================================
# Lifecycle changes
# ============================================================


class ChangePlanRequest(BaseModel):
    """Schema for a plan change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan_id: str = Field(min_length=1, description="Target plan")


class PlanChangeResponse(BaseModel):
    """Result of a plan change request."""

    outcome: PlanChangeOutcome
    requires_payment: bool
    message: str
    plan: PlanResponse
    effective_at: datetime | None = None


class CancelRequest(BaseModel):
    """Schema for a cancellation request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    immediate: bool = Field(False, description="Cancel now instead of at period end")
    reason: str | None = Field(None, max_length=500, description="Cancellation reason")


class CancelResponse(BaseModel):
    """Result of a cancellation."""

    status: SubscriptionStatus
    cancels_at_period_end: bool
    effective_at: datetime | None = None
    message: str


class ReactivateResponse(BaseModel):
    """Result of a reactivation request."""

    success: bool
    requires_payment: bool
    status: SubscriptionStatus
    message: str


class EntitlementResponse(BaseModel):
    """Entitlement check that passed."""

    allowed: bool = True
    status: SubscriptionStatus
    plan_id: str
    seats: int
    max_employees: int


class GatewayKeyResponse(BaseModel):
    key_id: str


class WebhookAck(BaseModel):
    received: bool = True


class ErrorResponse(BaseModel):
    """Error body produced by the billing error middleware."""

    error: dict[str, Any]
    correlation_id: str | None = None
    request_path: str | None = None
