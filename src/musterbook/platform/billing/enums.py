"""
Billing enumerations.

Closed sets of values stored in the billing tables. Status columns are only
ever written from these enums.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a tenant subscription."""

    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED)

    @property
    def grants_access(self) -> bool:
        return self in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)


class SubscriptionEvent(str, Enum):
    """Triggers accepted by the subscription state machine."""

    TRIAL_ENDED = "trial_ended"
    PERIOD_ENDED = "period_ended"
    PERIOD_ENDED_CANCELLED = "period_ended_cancelled"
    GRACE_EXPIRED = "grace_expired"
    PAYMENT_CAPTURED = "payment_captured"
    CANCELLED_IMMEDIATELY = "cancelled_immediately"


class BillingCycle(str, Enum):
    """Billing period length."""

    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class PaymentStatus(str, Enum):
    """Checkout attempt status."""

    CREATED = "CREATED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class InvoiceStatus(str, Enum):
    """Invoice status. Only paid invoices are issued."""

    PAID = "PAID"


class Feature(str, Enum):
    """Plan feature flags that can gate an operation."""

    PAYROLL = "payroll"
    ADVANCED_ANALYTICS = "advanced_analytics"
    CUSTOM_INTEGRATIONS = "custom_integrations"
    PRIORITY_SUPPORT = "priority_support"
    DEDICATED_MANAGER = "dedicated_manager"
    CUSTOM_WORKFLOWS = "custom_workflows"
    SLA = "sla"
    ON_PREMISE = "on_premise"

    @property
    def plan_attribute(self) -> str:
        """Name of the boolean column on the plan table."""
        return f"has_{self.value}"


class PlanChangeOutcome(str, Enum):
    """Result of a plan change request."""

    APPLIED = "applied"
    REQUIRES_PAYMENT = "requires_payment"
    SCHEDULED = "scheduled_for_period_end"


class WebhookEventType(str, Enum):
    """Gateway webhook event types the pipeline acts on."""

    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    REFUND_CREATED = "refund.created"


UNLIMITED_EMPLOYEES = -1
