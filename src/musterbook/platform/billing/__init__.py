"""
Billing system module.

Provides the subscription and billing lifecycle:
- Plan catalog
- Subscription state machine and lifecycle service
- Checkout through the payment gateway
- Webhook ingestion
- Entitlement checks
- Invoice ledger
"""

from musterbook.platform.billing.enums import (
    BillingCycle,
    Feature,
    PaymentStatus,
    PlanChangeOutcome,
    SubscriptionEvent,
    SubscriptionStatus,
)
from musterbook.platform.billing.exceptions import (
    BillingError,
    GatewayError,
    InvoiceNumberCollisionError,
    LimitExceededError,
    NotFoundError,
    PaymentNotFoundError,
    PlanNotFoundError,
    SignatureError,
    StateConflictError,
    SubscriptionAccessError,
    SubscriptionNotFoundError,
    ValidationError,
)

__all__ = [
    # Enums
    "BillingCycle",
    "Feature",
    "PaymentStatus",
    "PlanChangeOutcome",
    "SubscriptionEvent",
    "SubscriptionStatus",
    # Exceptions
    "BillingError",
    "GatewayError",
    "InvoiceNumberCollisionError",
    "LimitExceededError",
    "NotFoundError",
    "PaymentNotFoundError",
    "PlanNotFoundError",
    "SignatureError",
    "StateConflictError",
    "SubscriptionAccessError",
    "SubscriptionNotFoundError",
    "ValidationError",
]
