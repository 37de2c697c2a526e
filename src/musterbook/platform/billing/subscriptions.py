"""
Subscription service.

Owns every mutation of a tenant's subscription. Mutations run inside
``critical_section``, which serialises work per subscription, re-reads the row
under lock, brings it up to date with the clock and commits or rolls back as
one unit.
"""

import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.clock import Clock, ensure_utc, system_clock
from musterbook.platform.billing.collaborators import (
    AuditRecorder,
    InMemorySeatDirectory,
    LoggingNotificationSender,
    NotificationSender,
    SeatDirectory,
    StructlogAuditRecorder,
    audit_safely,
    notify_safely,
)
from musterbook.platform.billing.config import LifecycleConfig, get_billing_config
from musterbook.platform.billing.enums import (
    BillingCycle,
    PlanChangeOutcome,
    SubscriptionStatus,
)
from musterbook.platform.billing.exceptions import (
    LimitExceededError,
    StateConflictError,
    SubscriptionNotFoundError,
    ValidationError,
)
from musterbook.platform.billing.invoices import InvoiceLedger
from musterbook.platform.billing.locks import SubscriptionLockRegistry, subscription_locks
from musterbook.platform.billing.models import (
    BillingInvoiceTable,
    BillingPaymentTable,
    BillingPlanTable,
    BillingSubscriptionTable,
)
from musterbook.platform.billing.state_machine import SubscriptionStateMachine, Transition

logger = structlog.get_logger(__name__)

DEFAULT_CANCEL_REASON = "User requested cancellation"


@dataclass
class PlanChangeResult:
    outcome: PlanChangeOutcome
    plan: BillingPlanTable
    message: str
    effective_at: datetime | None = None

    @property
    def requires_payment(self) -> bool:
        return self.outcome == PlanChangeOutcome.REQUIRES_PAYMENT


@dataclass
class CancellationResult:
    subscription: BillingSubscriptionTable
    effective_at: datetime | None
    message: str


@dataclass
class ReactivationResult:
    success: bool
    requires_payment: bool
    subscription: BillingSubscriptionTable
    message: str


@dataclass
class SubscriptionUsage:
    employees: int
    max_employees: int
    percent_used: int
    features: dict[str, bool]


class SubscriptionService:
    """Lifecycle operations on a tenant's subscription."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock | None = None,
        config: LifecycleConfig | None = None,
        seat_directory: SeatDirectory | None = None,
        notifier: NotificationSender | None = None,
        auditor: AuditRecorder | None = None,
        locks: SubscriptionLockRegistry | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or system_clock
        self.config = config or get_billing_config().lifecycle
        self.seats = seat_directory or InMemorySeatDirectory()
        self.notifier = notifier or LoggingNotificationSender()
        self.auditor = auditor or StructlogAuditRecorder()
        self.locks = locks or subscription_locks
        self.catalog = PlanCatalog(session)
        self.machine = SubscriptionStateMachine(self.config)
        self.ledger = InvoiceLedger(session, self.config)

    def now(self) -> datetime:
        return ensure_utc(self.clock.now())

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _select(
        self, *criteria: Any, for_update: bool = False
    ) -> BillingSubscriptionTable | None:
        stmt = (
            select(BillingSubscriptionTable)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_for_tenant(self, tenant_id: str) -> BillingSubscriptionTable | None:
        """Current subscription for the tenant, brought up to date with the clock."""
        subscription = await self._select(BillingSubscriptionTable.tenant_id == tenant_id)
        if subscription is None:
            return None

        if self.machine.lapse_event(subscription, self.now()) is not None:
            async with self.critical_section(subscription.id) as subscription:
                pass
        return subscription

    async def get_for_tenant(self, tenant_id: str) -> BillingSubscriptionTable:
        subscription = await self.find_for_tenant(tenant_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                "No subscription found for this organization", tenant_id=tenant_id
            )
        return subscription

    @asynccontextmanager
    async def critical_section(
        self, subscription_id: str
    ) -> AsyncIterator[BillingSubscriptionTable]:
        """
        Serialise a mutation of one subscription.

        Yields the row re-read under lock with lapse events already applied.
        Commits when the block exits cleanly and rolls back otherwise.
        """
        async with self.locks.hold(subscription_id):
            try:
                subscription = await self._load_locked(subscription_id)
                transitions = self.machine.repair(subscription, self.now())
                if transitions:
                    await self.session.commit()
                    self._log_transitions(subscription, transitions)
                    subscription = await self._load_locked(subscription_id)

                yield subscription
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

    async def _load_locked(self, subscription_id: str) -> BillingSubscriptionTable:
        subscription = await self._select(
            BillingSubscriptionTable.id == subscription_id, for_update=True
        )
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    def _log_transitions(
        self, subscription: BillingSubscriptionTable, transitions: list[Transition]
    ) -> None:
        for transition in transitions:
            logger.info(
                "Subscription lapsed",
                subscription_id=subscription.id,
                tenant_id=subscription.tenant_id,
                lapse_event=transition.event.value,
                from_status=transition.from_status.value,
                to_status=transition.to_status.value,
            )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def start_trial(
        self,
        tenant_id: str,
        owner_user_id: str | None = None,
        plan_slug: str | None = None,
    ) -> BillingSubscriptionTable:
        """Create the tenant's single subscription in TRIAL."""
        existing = await self._select(BillingSubscriptionTable.tenant_id == tenant_id)
        if existing is not None:
            raise StateConflictError(
                "Organization already has a subscription",
                current_state=existing.status.value,
                requested="start_trial",
            )

        plan = await self.catalog.get_by_slug(plan_slug or self.config.default_plan_slug)
        now = self.now()
        trial_days = plan.trial_days
        if trial_days is None:
            trial_days = self.config.default_trial_days

        subscription = BillingSubscriptionTable(
            tenant_id=tenant_id,
            owner_user_id=owner_user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.TRIAL,
            billing_cycle=BillingCycle.MONTHLY,
            trial_start=now,
            trial_end=now + timedelta(days=trial_days),
            auto_renew=True,
            cancels_at_period_end=False,
        )
        self.session.add(subscription)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise StateConflictError(
                "Organization already has a subscription", requested="start_trial"
            ) from e

        logger.info(
            "Trial started",
            tenant_id=tenant_id,
            subscription_id=subscription.id,
            plan=plan.slug,
            trial_end=subscription.trial_end.isoformat(),
        )
        await notify_safely(
            self.notifier,
            owner_user_id,
            "GENERAL",
            "Welcome to Musterbook!",
            f"Your organization has a {trial_days}-day free trial of the {plan.name} plan. "
            "Explore all features and add your team!",
            "/dashboard",
        )
        await audit_safely(
            self.auditor,
            owner_user_id,
            "CREATE",
            "Subscription",
            subscription.id,
            f"Subscription created with {plan.name} trial",
            tenant_id=tenant_id,
        )
        return subscription

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def usage(
        self, subscription: BillingSubscriptionTable, plan: BillingPlanTable | None = None
    ) -> SubscriptionUsage:
        plan = plan or await self.catalog.get(subscription.plan_id)
        seats = await self.seats.count_active_seats(subscription.tenant_id)
        return SubscriptionUsage(
            employees=seats,
            max_employees=plan.max_employees,
            percent_used=_percent_used(seats, plan),
            features=plan.feature_flags(),
        )

    def days_remaining(self, subscription: BillingSubscriptionTable) -> int:
        """Whole days left in the trial or paid period, rounded up."""
        if subscription.status == SubscriptionStatus.TRIAL:
            boundary = ensure_utc(subscription.trial_end)
        elif subscription.status == SubscriptionStatus.ACTIVE:
            boundary = ensure_utc(subscription.current_period_end)
        else:
            return 0
        if boundary is None:
            return 0
        remaining = (boundary - self.now()).total_seconds() / 86400
        return max(0, math.ceil(remaining))

    async def recent_payments(self, subscription_id: str) -> list[BillingPaymentTable]:
        result = await self.session.execute(
            select(BillingPaymentTable)
            .where(BillingPaymentTable.subscription_id == subscription_id)
            .order_by(BillingPaymentTable.created_at.desc())
            .limit(self.config.recent_payments_limit)
        )
        return list(result.scalars().all())

    async def summary(self, tenant_id: str) -> dict[str, Any]:
        """Subscription, plan, usage and recent payments for the billing dashboard."""
        subscription = await self.get_for_tenant(tenant_id)
        plan = await self.catalog.get(subscription.plan_id)

        pending = None
        if subscription.pending_plan_id:
            pending = {
                "plan": await self.catalog.get(subscription.pending_plan_id),
                "effective_at": subscription.pending_plan_effective_at,
            }

        return {
            "subscription": subscription,
            "status": subscription.status,
            "plan": plan,
            "usage": await self.usage(subscription, plan),
            "days_remaining": self.days_remaining(subscription),
            "recent_payments": await self.recent_payments(subscription.id),
            "pending_plan_change": pending,
        }

    async def list_invoices(self, tenant_id: str) -> list[BillingInvoiceTable]:
        subscription = await self.get_for_tenant(tenant_id)
        return await self.ledger.list_for_subscription(subscription.id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def change_plan(
        self, tenant_id: str, plan_id: str, actor_user_id: str | None = None
    ) -> PlanChangeResult:
        """Switch plans now, ask for payment, or schedule a downgrade for period end."""
        subscription = await self.get_for_tenant(tenant_id)
        target = await self.catalog.get_active(plan_id)

        async with self.critical_section(subscription.id) as subscription:
            if target.id == subscription.plan_id:
                raise StateConflictError(
                    f"You are already on the {target.name} plan",
                    current_state=subscription.status.value,
                    requested="change_plan",
                )

            seats = await self.seats.count_active_seats(tenant_id)
            if not target.is_unlimited and seats > target.max_employees:
                raise LimitExceededError(
                    f"You have {seats} active employees, but the {target.name} plan allows "
                    f"only {target.max_employees}. Deactivate employees before switching.",
                    "EMPLOYEE_LIMIT_EXCEEDED_FOR_PLAN",
                    context={
                        "current_count": seats,
                        "new_plan_limit": target.max_employees,
                        "plan_id": target.id,
                    },
                )

            current = await self.catalog.get(subscription.plan_id)
            status = subscription.status

            if status == SubscriptionStatus.TRIAL:
                subscription.plan_id = target.id
                subscription.pending_plan_id = None
                subscription.pending_plan_effective_at = None
                result = PlanChangeResult(
                    PlanChangeOutcome.APPLIED,
                    target,
                    f"Plan changed to {target.name} (trial continues)",
                    effective_at=self.now(),
                )
            elif status != SubscriptionStatus.ACTIVE:
                result = PlanChangeResult(
                    PlanChangeOutcome.REQUIRES_PAYMENT,
                    target,
                    f"Subscribing to {target.name} requires payment",
                )
            elif target.is_custom:
                raise ValidationError(
                    f"The {target.name} plan is arranged through sales. Please contact us.",
                    field="plan_id",
                )
            elif Decimal(target.monthly_price) > Decimal(current.monthly_price):
                result = PlanChangeResult(
                    PlanChangeOutcome.REQUIRES_PAYMENT,
                    target,
                    f"Upgrading to {target.name} requires payment",
                )
            else:
                subscription.pending_plan_id = target.id
                subscription.pending_plan_effective_at = subscription.current_period_end
                result = PlanChangeResult(
                    PlanChangeOutcome.SCHEDULED,
                    target,
                    f"Plan will change to {target.name} at the end of your current billing period",
                    effective_at=ensure_utc(subscription.current_period_end),
                )

        logger.info(
            "Plan change requested",
            tenant_id=tenant_id,
            from_plan_id=current.id,
            to_plan_id=target.id,
            outcome=result.outcome.value,
        )
        if not result.requires_payment:
            await audit_safely(
                self.auditor,
                actor_user_id,
                "UPDATE",
                "Subscription",
                subscription.id,
                f"Plan change from {current.name} to {target.name}: {result.outcome.value}",
                tenant_id=tenant_id,
            )
        return result

    async def cancel(
        self,
        tenant_id: str,
        *,
        immediate: bool = False,
        reason: str | None = None,
        actor_user_id: str | None = None,
    ) -> CancellationResult:
        subscription = await self.get_for_tenant(tenant_id)

        async with self.critical_section(subscription.id) as subscription:
            if subscription.status.is_terminal:
                raise StateConflictError(
                    "Subscription is already cancelled or expired",
                    current_state=subscription.status.value,
                    requested="cancel",
                )

            now = self.now()
            reason = reason or DEFAULT_CANCEL_REASON
            period_end = ensure_utc(subscription.current_period_end)

            if (
                immediate
                or subscription.status == SubscriptionStatus.TRIAL
                or period_end is None
                or period_end <= now
            ):
                self.machine.cancel_immediately(subscription, now, reason)
                effective_at = now
                message = "Subscription cancelled immediately"
            else:
                subscription.cancels_at_period_end = True
                subscription.cancelled_at = now
                subscription.cancel_reason = reason
                subscription.cancel_effective_at = period_end
                subscription.auto_renew = False
                effective_at = period_end
                message = "Subscription will be cancelled at the end of the current billing period"

        logger.info(
            "Subscription cancelled",
            tenant_id=tenant_id,
            subscription_id=subscription.id,
            immediate=subscription.status == SubscriptionStatus.CANCELLED,
            effective_at=effective_at.isoformat(),
        )
        await audit_safely(
            self.auditor,
            actor_user_id,
            "CANCEL",
            "Subscription",
            subscription.id,
            f"Subscription cancelled. Reason: {reason}. Immediate: {immediate}",
            tenant_id=tenant_id,
        )
        await notify_safely(
            self.notifier,
            subscription.owner_user_id or actor_user_id,
            "GENERAL",
            "Subscription cancelled",
            message,
            "/dashboard/subscription",
        )
        return CancellationResult(subscription, effective_at, message)

    async def reactivate(
        self, tenant_id: str, actor_user_id: str | None = None
    ) -> ReactivationResult:
        """Undo a cancel-at-period-end while the paid period is still running."""
        subscription = await self.get_for_tenant(tenant_id)

        async with self.critical_section(subscription.id) as subscription:
            period_end = ensure_utc(subscription.current_period_end)
            can_reactivate = (
                subscription.cancels_at_period_end
                and period_end is not None
                and self.now() < period_end
            )
            if can_reactivate:
                subscription.cancels_at_period_end = False
                subscription.cancelled_at = None
                subscription.cancel_reason = None
                subscription.cancel_effective_at = None
                subscription.auto_renew = True

        if not can_reactivate:
            return ReactivationResult(
                success=False,
                requires_payment=True,
                subscription=subscription,
                message="Your subscription has ended. Please make a payment to reactivate.",
            )

        logger.info(
            "Subscription reactivated", tenant_id=tenant_id, subscription_id=subscription.id
        )
        await audit_safely(
            self.auditor,
            actor_user_id,
            "UPDATE",
            "Subscription",
            subscription.id,
            "Scheduled cancellation withdrawn",
            tenant_id=tenant_id,
        )
        return ReactivationResult(
            success=True,
            requires_payment=False,
            subscription=subscription,
            message="Subscription reactivated successfully",
        )


def _percent_used(seats: int, plan: BillingPlanTable) -> int:
    if plan.is_unlimited:
        return 0
    if plan.max_employees <= 0:
        return 100 if seats else 0
    ratio = Decimal(seats) * 100 / Decimal(plan.max_employees)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


__all__ = [
    "SubscriptionService",
    "PlanChangeResult",
    "CancellationResult",
    "ReactivationResult",
    "SubscriptionUsage",
]
