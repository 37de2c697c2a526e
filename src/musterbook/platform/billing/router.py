"""
Billing API router.

Plan catalog, the tenant's subscription lifecycle, checkout and the gateway
webhook. Errors are raised as ``BillingError`` and rendered by the billing
middleware.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request, status

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.dependencies import (
    BillingRuntime,
    get_entitlement_guard,
    get_payment_processor,
    get_plan_catalog,
    get_runtime,
    get_subscription_service,
    get_tenant_id,
    get_user_id,
    get_webhook_service,
    require_admin,
)
from musterbook.platform.billing.entitlements import EntitlementGuard
from musterbook.platform.billing.enums import Feature
from musterbook.platform.billing.exceptions import GatewayError
from musterbook.platform.billing.payments import PaymentProcessor
from musterbook.platform.billing.schemas import (
    CancelRequest,
    CancelResponse,
    ChangePlanRequest,
    CheckoutOrderResponse,
    CreateOrderRequest,
    EntitlementResponse,
    GatewayKeyResponse,
    InvoiceResponse,
    PaymentVerificationResponse,
    PlanChangeResponse,
    PlanCreateRequest,
    PlanResponse,
    PlanUpdateRequest,
    ReactivateResponse,
    StartTrialRequest,
    SubscriptionResponse,
    SubscriptionSummaryResponse,
    UsageResponse,
    VerifyPaymentRequest,
    WebhookAck,
)
from musterbook.platform.billing.subscriptions import SubscriptionService
from musterbook.platform.billing.webhooks import WebhookIngestionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

TenantId = Annotated[str, Depends(get_tenant_id)]
UserId = Annotated[str | None, Depends(get_user_id)]
Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]
Payments = Annotated[PaymentProcessor, Depends(get_payment_processor)]


# ==================== Plans ====================


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    catalog: Annotated[PlanCatalog, Depends(get_plan_catalog)],
) -> list[PlanResponse]:
    """List active plans in display order."""
    return [PlanResponse.model_validate(plan) for plan in await catalog.list_active()]


@router.get("/plans/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    catalog: Annotated[PlanCatalog, Depends(get_plan_catalog)],
) -> PlanResponse:
    return PlanResponse.model_validate(await catalog.get(plan_id))


@router.post(
    "/plans",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_plan(
    data: PlanCreateRequest,
    catalog: Annotated[PlanCatalog, Depends(get_plan_catalog)],
) -> PlanResponse:
    return PlanResponse.model_validate(await catalog.create(data))


@router.patch(
    "/plans/{plan_id}",
    response_model=PlanResponse,
    dependencies=[Depends(require_admin)],
)
async def update_plan(
    plan_id: str,
    data: PlanUpdateRequest,
    catalog: Annotated[PlanCatalog, Depends(get_plan_catalog)],
) -> PlanResponse:
    """Update a plan. Every change bumps the plan version."""
    return PlanResponse.model_validate(await catalog.update(plan_id, data))


@router.post(
    "/plans/{plan_id}/deactivate",
    response_model=PlanResponse,
    dependencies=[Depends(require_admin)],
)
async def deactivate_plan(
    plan_id: str,
    catalog: Annotated[PlanCatalog, Depends(get_plan_catalog)],
) -> PlanResponse:
    return PlanResponse.model_validate(await catalog.deactivate(plan_id))


@router.get("/gateway-key", response_model=GatewayKeyResponse)
async def get_gateway_key(
    runtime: Annotated[BillingRuntime, Depends(get_runtime)],
) -> GatewayKeyResponse:
    """Public key id for the client checkout widget."""
    if not runtime.gateway.is_configured:
        raise GatewayError(
            "Payment gateway is not configured",
            error_code="GATEWAY_NOT_CONFIGURED",
            status_code=503,
        )
    return GatewayKeyResponse(key_id=runtime.gateway.public_key)


# ==================== Subscription ====================


@router.post(
    "/subscription/trial",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_trial(
    tenant_id: TenantId,
    user_id: UserId,
    service: Subscriptions,
    data: StartTrialRequest | None = None,
) -> SubscriptionResponse:
    """Start the organization's trial. Called once at registration."""
    subscription = await service.start_trial(
        tenant_id,
        owner_user_id=user_id,
        plan_slug=data.plan_slug if data else None,
    )
    return SubscriptionResponse.model_validate(subscription)


@router.get("/subscription/current", response_model=SubscriptionSummaryResponse)
async def get_current_subscription(
    tenant_id: TenantId,
    service: Subscriptions,
) -> SubscriptionSummaryResponse:
    """Subscription, plan, seat usage, days remaining and recent payments."""
    summary = await service.summary(tenant_id)
    return SubscriptionSummaryResponse.model_validate(summary, from_attributes=True)


@router.get("/subscription/usage", response_model=UsageResponse)
async def get_usage(
    tenant_id: TenantId,
    service: Subscriptions,
) -> UsageResponse:
    """Seat usage against the plan ceiling, with the plan's feature flags."""
    subscription = await service.get_for_tenant(tenant_id)
    usage = await service.usage(subscription)
    return UsageResponse.model_validate(usage, from_attributes=True)


@router.get("/subscription/invoices", response_model=list[InvoiceResponse])
async def list_invoices(
    tenant_id: TenantId,
    service: Subscriptions,
) -> list[InvoiceResponse]:
    return [InvoiceResponse.model_validate(i) for i in await service.list_invoices(tenant_id)]


@router.post(
    "/subscription/create-order",
    response_model=CheckoutOrderResponse,
    dependencies=[Depends(require_admin)],
)
async def create_order(
    data: CreateOrderRequest,
    tenant_id: TenantId,
    processor: Payments,
) -> CheckoutOrderResponse:
    """Create a gateway order for the client checkout widget."""
    order = await processor.create_order(tenant_id, data.plan_id, data.billing_cycle)
    return CheckoutOrderResponse.model_validate(order, from_attributes=True)


@router.post("/subscription/verify-payment", response_model=PaymentVerificationResponse)
async def verify_payment(
    data: VerifyPaymentRequest,
    tenant_id: TenantId,
    processor: Payments,
) -> PaymentVerificationResponse:
    """Checkout callback: verify the signature and activate the subscription."""
    outcome = await processor.verify_payment(
        tenant_id,
        data.order_id,
        data.payment_id,
        data.signature,
        plan_id=data.plan_id,
        billing_cycle=data.billing_cycle,
    )
    subscription = outcome.subscription
    return PaymentVerificationResponse(
        subscription_status=subscription.status,
        plan=PlanResponse.model_validate(outcome.plan),
        billing_cycle=subscription.billing_cycle,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        invoice_number=outcome.invoice.invoice_number if outcome.invoice else None,
        already_processed=outcome.already_processed,
    )


@router.post(
    "/subscription/change-plan",
    response_model=PlanChangeResponse,
    dependencies=[Depends(require_admin)],
)
async def change_plan(
    data: ChangePlanRequest,
    tenant_id: TenantId,
    user_id: UserId,
    service: Subscriptions,
) -> PlanChangeResponse:
    result = await service.change_plan(tenant_id, data.plan_id, actor_user_id=user_id)
    return PlanChangeResponse(
        outcome=result.outcome,
        requires_payment=result.requires_payment,
        message=result.message,
        plan=PlanResponse.model_validate(result.plan),
        effective_at=result.effective_at,
    )


@router.post(
    "/subscription/cancel",
    response_model=CancelResponse,
    dependencies=[Depends(require_admin)],
)
async def cancel_subscription(
    tenant_id: TenantId,
    user_id: UserId,
    service: Subscriptions,
    data: CancelRequest | None = None,
) -> CancelResponse:
    data = data or CancelRequest()
    result = await service.cancel(
        tenant_id, immediate=data.immediate, reason=data.reason, actor_user_id=user_id
    )
    return CancelResponse(
        status=result.subscription.status,
        cancels_at_period_end=result.subscription.cancels_at_period_end,
        effective_at=result.effective_at,
        message=result.message,
    )


@router.post(
    "/subscription/reactivate",
    response_model=ReactivateResponse,
    dependencies=[Depends(require_admin)],
)
async def reactivate_subscription(
    tenant_id: TenantId,
    user_id: UserId,
    service: Subscriptions,
) -> ReactivateResponse:
    result = await service.reactivate(tenant_id, actor_user_id=user_id)
    return ReactivateResponse(
        success=result.success,
        requires_payment=result.requires_payment,
        status=result.subscription.status,
        message=result.message,
    )


@router.get("/subscription/entitlements", response_model=EntitlementResponse)
async def check_entitlements(
    tenant_id: TenantId,
    guard: Annotated[EntitlementGuard, Depends(get_entitlement_guard)],
    adds_seat: bool = Query(False, description="Check seat headroom for a new employee"),
    feature: Feature | None = Query(None, description="Plan feature to check"),
) -> EntitlementResponse:
    """Run the entitlement guard; a denial is returned as a 403 error body."""
    context = await guard.check(tenant_id, adds_seat=adds_seat, feature=feature)
    return EntitlementResponse(
        status=context.subscription.status,
        plan_id=context.plan.id,
        seats=context.seats if context.seats is not None else 0,
        max_employees=context.plan.max_employees,
    )


# ==================== Webhook ====================


@router.post("/webhook", response_model=WebhookAck)
async def ingest_webhook(
    request: Request,
    runtime: Annotated[BillingRuntime, Depends(get_runtime)],
    service: Annotated[WebhookIngestionService, Depends(get_webhook_service)],
) -> WebhookAck:
    """Gateway webhook. Acknowledged with 200 unless the signature is invalid."""
    raw_body = await request.body()
    signature = request.headers.get(runtime.config.gateway.signature_header)
    return WebhookAck.model_validate(await service.ingest(raw_body, signature))
