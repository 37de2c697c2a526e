"""
Billing database tables.

Plan, Subscription, Payment and Invoice rows. Status columns are mapped to the
closed enums in ``billing.enums`` so no other value can be persisted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from musterbook.platform.billing.enums import (
    UNLIMITED_EMPLOYEES,
    BillingCycle,
    Feature,
    InvoiceStatus,
    PaymentStatus,
    SubscriptionStatus,
)
from musterbook.platform.db import Base, TimestampMixin, UTCDateTime


def _new_id() -> str:
    return str(uuid4())


def _enum_column(enum_cls: type) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class BillingPlanTable(Base, TimestampMixin):
    """Purchasable plan tier and its entitlements."""

    __tablename__ = "billing_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing (major currency units)
    monthly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    yearly_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    # Limits
    max_employees: Mapped[int] = mapped_column(Integer, nullable=False)  # -1 means unlimited
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=14)

    # Catalog presentation
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Feature flags
    has_payroll: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_advanced_analytics: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_custom_integrations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_priority_support: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_dedicated_manager: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_custom_workflows: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_sla: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_on_premise: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_billing_plans_active_sort", "is_active", "sort_order"),
        {"extend_existing": True},
    )

    @property
    def is_unlimited(self) -> bool:
        return self.max_employees == UNLIMITED_EMPLOYEES

    def has_feature(self, feature: Feature) -> bool:
        return bool(getattr(self, feature.plan_attribute))

    def feature_flags(self) -> dict[str, bool]:
        return {feature.value: self.has_feature(feature) for feature in Feature}

    def price_for(self, cycle: BillingCycle) -> Decimal:
        """Price charged for one period of the given cycle."""
        if cycle == BillingCycle.YEARLY and self.yearly_price:
            return Decimal(self.yearly_price)
        return Decimal(self.monthly_price)


class BillingSubscriptionTable(Base, TimestampMixin):
    """One subscription per tenant. Mutated only by the subscription service."""

    __tablename__ = "billing_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    plan_id: Mapped[str] = mapped_column(ForeignKey("billing_plans.id"), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum_column(SubscriptionStatus), nullable=False
    )
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        _enum_column(BillingCycle), nullable=False, default=BillingCycle.MONTHLY
    )

    # Trial
    trial_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Current billing period
    current_period_start: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancels_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_effective_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    # Deferred downgrade
    pending_plan_id: Mapped[str | None] = mapped_column(
        ForeignKey("billing_plans.id"), nullable=True
    )
    pending_plan_effective_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_billing_subscriptions_tenant"),
        Index("ix_billing_subscriptions_status", "status"),
        Index("ix_billing_subscriptions_period_end", "current_period_end"),
        {"extend_existing": True},
    )


class BillingPaymentTable(Base, TimestampMixin):
    """One row per checkout attempt."""

    __tablename__ = "billing_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("billing_subscriptions.id"), nullable=False
    )

    # What is being bought
    plan_id: Mapped[str | None] = mapped_column(ForeignKey("billing_plans.id"), nullable=True)
    billing_cycle: Mapped[BillingCycle | None] = mapped_column(
        _enum_column(BillingCycle), nullable=True
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Amounts
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Gateway references
    gateway_order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    receipt: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus), nullable=False, default=PaymentStatus.CREATED
    )
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    captured_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    notes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("gateway_order_id", name="uq_billing_payments_order"),
        UniqueConstraint("gateway_payment_id", name="uq_billing_payments_gateway_payment"),
        UniqueConstraint("receipt", name="uq_billing_payments_receipt"),
        Index("ix_billing_payments_subscription_created", "subscription_id", "created_at"),
        Index("ix_billing_payments_status_created", "status", "created_at"),
        {"extend_existing": True},
    )


class BillingInvoiceTable(Base, TimestampMixin):
    """Append-only invoice, at most one per payment."""

    __tablename__ = "billing_invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("billing_subscriptions.id"), nullable=False
    )
    payment_id: Mapped[str] = mapped_column(ForeignKey("billing_payments.id"), nullable=False)

    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        _enum_column(InvoiceStatus), nullable=False, default=InvoiceStatus.PAID
    )
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_billing_invoices_number"),
        UniqueConstraint("payment_id", name="uq_billing_invoices_payment"),
        Index("ix_billing_invoices_subscription_created", "subscription_id", "created_at"),
        {"extend_existing": True},
    )


__all__ = [
    "BillingPlanTable",
    "BillingSubscriptionTable",
    "BillingPaymentTable",
    "BillingInvoiceTable",
]
