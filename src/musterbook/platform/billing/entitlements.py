"""
Entitlement guard.

Gate for tenant-scoped operations: a current subscription in good standing,
seat headroom for operations that add an employee, and the plan flag for
gated features.
"""

from dataclasses import dataclass

import structlog

from musterbook.platform.billing.enums import Feature, SubscriptionStatus
from musterbook.platform.billing.exceptions import LimitExceededError, SubscriptionAccessError
from musterbook.platform.billing.models import BillingPlanTable, BillingSubscriptionTable
from musterbook.platform.billing.subscriptions import SubscriptionService

logger = structlog.get_logger(__name__)

# Status -> (error code, message)
STATUS_DENIALS: dict[SubscriptionStatus, tuple[str, str]] = {
    SubscriptionStatus.EXPIRED: (
        "TRIAL_EXPIRED",
        "Your trial has ended. Please subscribe to continue.",
    ),
    SubscriptionStatus.PAST_DUE: (
        "SUBSCRIPTION_PAST_DUE",
        "Your payment is overdue. Please renew your subscription to continue.",
    ),
    SubscriptionStatus.SUSPENDED: (
        "SUBSCRIPTION_SUSPENDED",
        "Your subscription is suspended for non-payment. Please renew to restore access.",
    ),
    SubscriptionStatus.CANCELLED: (
        "SUBSCRIPTION_INACTIVE",
        "Your subscription has been cancelled. Please subscribe to continue.",
    ),
}


@dataclass
class EntitlementContext:
    """What a passed check resolved, for handlers that need it."""

    subscription: BillingSubscriptionTable
    plan: BillingPlanTable
    seats: int | None = None


class EntitlementGuard:
    """Evaluates whether a tenant may perform an operation."""

    def __init__(self, subscriptions: SubscriptionService) -> None:
        self.subscriptions = subscriptions

    async def check(
        self,
        tenant_id: str,
        *,
        adds_seat: bool = False,
        feature: Feature | None = None,
    ) -> EntitlementContext:
        """
        Allow or deny an operation for ``tenant_id``.

        Raises:
            SubscriptionNotFoundError: The tenant has no subscription
            SubscriptionAccessError: The subscription status does not grant access
            LimitExceededError: Seat ceiling reached or feature not on the plan
        """
        subscription = await self.subscriptions.get_for_tenant(tenant_id)

        denial = STATUS_DENIALS.get(subscription.status)
        if denial is not None:
            code, message = denial
            logger.info(
                "Entitlement denied",
                tenant_id=tenant_id,
                status=subscription.status.value,
                error_code=code,
            )
            raise SubscriptionAccessError(message, code, subscription.status.value)

        plan = await self.subscriptions.catalog.get(subscription.plan_id)
        context = EntitlementContext(subscription=subscription, plan=plan)

        if adds_seat:
            seats = await self.subscriptions.seats.count_active_seats(tenant_id)
            context.seats = seats
            if not plan.is_unlimited and seats >= plan.max_employees:
                logger.info(
                    "Seat limit reached",
                    tenant_id=tenant_id,
                    seats=seats,
                    max_employees=plan.max_employees,
                )
                raise LimitExceededError(
                    f"Your {plan.name} plan allows up to {plan.max_employees} employees. "
                    "Upgrade your plan to add more.",
                    "EMPLOYEE_LIMIT_REACHED",
                    context={"current_count": seats, "max_employees": plan.max_employees},
                    upgrade_to=await self._upgrade_target(plan),
                )

        if feature is not None and not plan.has_feature(feature):
            raise LimitExceededError(
                f"{feature.value.replace('_', ' ').capitalize()} is not available on the "
                f"{plan.name} plan.",
                "FEATURE_NOT_AVAILABLE",
                context={"feature": feature.value, "plan": plan.slug},
                upgrade_to=await self._upgrade_target(plan, feature),
            )

        return context

    async def _upgrade_target(
        self, plan: BillingPlanTable, feature: Feature | None = None
    ) -> str | None:
        """Slug of the next tier above ``plan`` that lifts the limit."""
        for candidate in await self.subscriptions.catalog.list_active():
            if candidate.id == plan.id or candidate.sort_order <= plan.sort_order:
                continue
            if feature is not None:
                lifts_limit = candidate.has_feature(feature)
            else:
                lifts_limit = candidate.is_unlimited or candidate.max_employees > plan.max_employees
            if lifts_limit:
                return candidate.slug
        return None


__all__ = ["EntitlementGuard", "EntitlementContext", "STATUS_DENIALS"]
