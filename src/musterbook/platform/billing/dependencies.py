"""
Billing module dependencies and common utilities.

This module provides shared dependencies for billing endpoints, including
tenant context resolution, service construction and entitlement checks.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.clock import Clock, system_clock
from musterbook.platform.billing.collaborators import (
    AuditRecorder,
    InMemorySeatDirectory,
    LoggingNotificationSender,
    NotificationSender,
    SeatDirectory,
    StructlogAuditRecorder,
)
from musterbook.platform.billing.config import BillingConfig, get_billing_config
from musterbook.platform.billing.entitlements import EntitlementContext, EntitlementGuard
from musterbook.platform.billing.enums import Feature
from musterbook.platform.billing.exceptions import BillingError
from musterbook.platform.billing.gateway import PaymentGateway, RazorpayGateway
from musterbook.platform.billing.locks import SubscriptionLockRegistry, subscription_locks
from musterbook.platform.billing.payments import PaymentProcessor
from musterbook.platform.billing.subscriptions import SubscriptionService
from musterbook.platform.billing.webhooks import WebhookIngestionService
from musterbook.platform.db import get_async_session


@dataclass
class BillingRuntime:
    """Process-wide collaborators shared by every billing request."""

    config: BillingConfig = field(default_factory=get_billing_config)
    gateway: PaymentGateway | None = None
    clock: Clock = system_clock
    seat_directory: SeatDirectory = field(default_factory=InMemorySeatDirectory)
    notifier: NotificationSender = field(default_factory=LoggingNotificationSender)
    auditor: AuditRecorder = field(default_factory=StructlogAuditRecorder)
    locks: SubscriptionLockRegistry = subscription_locks

    def __post_init__(self) -> None:
        if self.gateway is None:
            self.gateway = RazorpayGateway(self.config.gateway)


def get_runtime(request: Request) -> BillingRuntime:
    """The runtime installed on the application by ``create_app``."""
    runtime = getattr(request.app.state, "billing", None)
    if runtime is None:
        runtime = BillingRuntime()
        request.app.state.billing = runtime
    return runtime


async def get_tenant_id(x_tenant_id: str | None = Header(None, alias="X-Tenant-ID")) -> str:
    """
    Get tenant ID from the request.

    Raises:
        BillingError: If no tenant is identified
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise BillingError(
            "Tenant context is required",
            "TENANT_REQUIRED",
            status_code=401,
            recovery_hint="Sign in to an organization and retry",
        )
    return x_tenant_id.strip()


async def get_user_id(x_user_id: str | None = Header(None, alias="X-User-ID")) -> str | None:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


async def require_admin(x_user_role: str | None = Header(None, alias="X-User-Role")) -> None:
    """Plan administration and subscription changes are limited to admins."""
    if (x_user_role or "").upper() != "ADMIN":
        raise BillingError(
            "Administrator access required",
            "ADMIN_REQUIRED",
            status_code=403,
        )


# ============================================================
# Services
# ============================================================


def get_plan_catalog(session: AsyncSession = Depends(get_async_session)) -> PlanCatalog:
    return PlanCatalog(session)


def get_subscription_service(
    session: AsyncSession = Depends(get_async_session),
    runtime: BillingRuntime = Depends(get_runtime),
) -> SubscriptionService:
    return SubscriptionService(
        session,
        clock=runtime.clock,
        config=runtime.config.lifecycle,
        seat_directory=runtime.seat_directory,
        notifier=runtime.notifier,
        auditor=runtime.auditor,
        locks=runtime.locks,
    )


def get_payment_processor(
    session: AsyncSession = Depends(get_async_session),
    runtime: BillingRuntime = Depends(get_runtime),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> PaymentProcessor:
    return PaymentProcessor(session, runtime.gateway, subscriptions)


def get_webhook_service(
    runtime: BillingRuntime = Depends(get_runtime),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WebhookIngestionService:
    return WebhookIngestionService(runtime.gateway, processor)


def get_entitlement_guard(
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> EntitlementGuard:
    return EntitlementGuard(subscriptions)


# ============================================================
# Entitlement checks for tenant-scoped routes
# ============================================================


async def require_subscription(
    tenant_id: str = Depends(get_tenant_id),
    guard: EntitlementGuard = Depends(get_entitlement_guard),
) -> EntitlementContext:
    """Deny unless the tenant's subscription is in good standing."""
    return await guard.check(tenant_id)


async def require_seat_capacity(
    tenant_id: str = Depends(get_tenant_id),
    guard: EntitlementGuard = Depends(get_entitlement_guard),
) -> EntitlementContext:
    """Deny employee-creating operations once the plan's seat ceiling is reached."""
    return await guard.check(tenant_id, adds_seat=True)


def require_feature(feature: Feature) -> Callable[..., Awaitable[EntitlementContext]]:
    """
    Build a dependency that denies access unless the plan includes ``feature``.

    Example:
        @router.post("/payroll/run", dependencies=[Depends(require_feature(Feature.PAYROLL))])
    """

    async def _check(
        tenant_id: str = Depends(get_tenant_id),
        guard: EntitlementGuard = Depends(get_entitlement_guard),
    ) -> EntitlementContext:
        return await guard.check(tenant_id, feature=feature)

    return _check


__all__ = [
    "BillingRuntime",
    "get_runtime",
    "get_tenant_id",
    "get_user_id",
    "require_admin",
    "get_plan_catalog",
    "get_subscription_service",
    "get_payment_processor",
    "get_webhook_service",
    "get_entitlement_guard",
    "require_subscription",
    "require_seat_capacity",
    "require_feature",
]
