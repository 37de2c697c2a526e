"""
Checkout and payment processing.

``PaymentProcessor`` creates gateway orders and applies the monotonic payment
transitions (CREATED -> CAPTURED -> REFUNDED, CREATED -> FAILED). The
synchronous checkout callback and the webhook pipeline both go through
``apply_capture``, which re-reads the payment under the subscription lock so
a capture is applied exactly once whichever path arrives first.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musterbook.platform.billing.collaborators import audit_safely, notify_safely
from musterbook.platform.billing.enums import BillingCycle, PaymentStatus
from musterbook.platform.billing.exceptions import (
    GatewayError,
    PaymentNotFoundError,
    SignatureError,
    StateConflictError,
    ValidationError,
)
from musterbook.platform.billing.gateway import PaymentGateway
from musterbook.platform.billing.models import (
    BillingInvoiceTable,
    BillingPaymentTable,
    BillingPlanTable,
    BillingSubscriptionTable,
)
from musterbook.platform.billing.money_utils import create_money, format_money, to_minor_units
from musterbook.platform.billing.subscriptions import SubscriptionService

logger = structlog.get_logger(__name__)


def generate_receipt(tenant_id: str, now: datetime) -> str:
    """Receipt reference, unique per checkout attempt and within gateway limits."""
    millis = int(now.timestamp() * 1000)
    return f"rcpt_{tenant_id[-6:]}_{millis}_{secrets.token_hex(3)}"


@dataclass
class CheckoutOrder:
    order_id: str
    amount: int
    currency: str
    key_id: str
    plan_name: str
    billing_cycle: BillingCycle
    description: str


@dataclass
class CaptureOutcome:
    payment: BillingPaymentTable
    subscription: BillingSubscriptionTable
    plan: BillingPlanTable
    invoice: BillingInvoiceTable | None
    already_processed: bool = False


class PaymentProcessor:
    """Creates checkout orders and applies payment outcomes."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        subscriptions: SubscriptionService,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.subscriptions = subscriptions
        self.catalog = subscriptions.catalog
        self.ledger = subscriptions.ledger
        self.machine = subscriptions.machine

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _find_payment(
        self, *criteria: Any, for_update: bool = False
    ) -> BillingPaymentTable | None:
        stmt = (
            select(BillingPaymentTable)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_order(self, order_id: str) -> BillingPaymentTable:
        payment = await self._find_payment(BillingPaymentTable.gateway_order_id == order_id)
        if payment is None:
            raise PaymentNotFoundError(f"No payment found for order {order_id}", order_id=order_id)
        return payment

    async def _reload(self, payment_id: str) -> BillingPaymentTable:
        payment = await self._find_payment(BillingPaymentTable.id == payment_id, for_update=True)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        return payment

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_order(
        self,
        tenant_id: str,
        plan_id: str,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    ) -> CheckoutOrder:
        """
        Create a gateway order for one period of ``plan_id``.

        The payment row is only written once the gateway has accepted the
        order, so a failed or timed-out call leaves nothing behind.
        """
        if not self.gateway.is_configured:
            raise GatewayError(
                "Payment gateway is not configured",
                error_code="GATEWAY_NOT_CONFIGURED",
                status_code=503,
            )

        subscription = await self.subscriptions.get_for_tenant(tenant_id)
        plan = await self.catalog.get_active(plan_id)
        if plan.is_custom:
            raise ValidationError(
                f"The {plan.name} plan is arranged through sales. Please contact us.",
                field="plan_id",
            )

        price = plan.price_for(billing_cycle)
        if price <= 0:
            raise ValidationError(f"The {plan.name} plan has no price to charge", field="plan_id")

        now = self.subscriptions.now()
        amount_minor = to_minor_units(price, plan.currency)
        receipt = generate_receipt(tenant_id, now)
        description = f"{plan.name} Plan - {billing_cycle.value.title()}"
        notes = {
            "tenant_id": tenant_id,
            "subscription_id": subscription.id,
            "plan_id": plan.id,
            "billing_cycle": billing_cycle.value,
        }

        order = await self.gateway.create_order(amount_minor, plan.currency, receipt, notes)

        payment = BillingPaymentTable(
            subscription_id=subscription.id,
            plan_id=plan.id,
            billing_cycle=billing_cycle,
            description=description,
            amount=price,
            amount_minor=amount_minor,
            currency=plan.currency,
            gateway_order_id=order.order_id,
            receipt=receipt,
            status=PaymentStatus.CREATED,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        await self.session.commit()

        logger.info(
            "Checkout order created",
            tenant_id=tenant_id,
            order_id=order.order_id,
            plan=plan.slug,
            billing_cycle=billing_cycle.value,
            amount_minor=amount_minor,
        )
        return CheckoutOrder(
            order_id=order.order_id,
            amount=amount_minor,
            currency=plan.currency,
            key_id=self.gateway.public_key,
            plan_name=plan.name,
            billing_cycle=billing_cycle,
            description=description,
        )

    async def verify_payment(
        self,
        tenant_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        plan_id: str | None = None,
        billing_cycle: BillingCycle | None = None,
    ) -> CaptureOutcome:
        """Verify the checkout callback and apply the capture."""
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(
                "Payment signature verification failed",
                tenant_id=tenant_id,
                order_id=order_id,
                payment_id=payment_id,
            )
            raise SignatureError("Payment verification failed", source="checkout")

        details = await self.gateway.fetch_payment_details(payment_id)
        return await self.apply_capture(
            order_id,
            payment_id,
            method=details.method if details else None,
            signature=signature,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            tenant_id=tenant_id,
        )

    # ------------------------------------------------------------------
    # Payment transitions
    # ------------------------------------------------------------------

    async def apply_capture(
        self,
        order_id: str,
        gateway_payment_id: str,
        *,
        method: str | None = None,
        signature: str | None = None,
        plan_id: str | None = None,
        billing_cycle: BillingCycle | None = None,
        tenant_id: str | None = None,
    ) -> CaptureOutcome:
        """Mark the order's payment captured and extend the subscription, once."""
        payment = await self.get_by_order(order_id)

        async with self.subscriptions.critical_section(payment.subscription_id) as subscription:
            if tenant_id is not None and subscription.tenant_id != tenant_id:
                raise PaymentNotFoundError(
                    f"No payment found for order {order_id}", order_id=order_id
                )

            payment = await self._reload(payment.id)

            if payment.status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
                invoice = await self.ledger.get_for_payment(payment.id)
                already_processed = True
            elif payment.status == PaymentStatus.FAILED:
                raise StateConflictError(
                    "Payment was already marked as failed",
                    current_state=payment.status.value,
                    requested="capture",
                    recovery_hint="Start a new checkout",
                )
            else:
                now = self.subscriptions.now()
                # Plan and cycle recorded at checkout win over caller-supplied values
                payment.plan_id = payment.plan_id or plan_id or subscription.plan_id
                payment.billing_cycle = (
                    payment.billing_cycle or billing_cycle or subscription.billing_cycle
                )
                payment.status = PaymentStatus.CAPTURED
                payment.gateway_payment_id = gateway_payment_id
                payment.gateway_signature = signature or payment.gateway_signature
                payment.method = method or payment.method
                payment.captured_at = now

                self.machine.capture(
                    subscription,
                    now,
                    plan_id=payment.plan_id,
                    billing_cycle=payment.billing_cycle,
                )
                invoice = await self.ledger.issue(
                    payment,
                    period_start=subscription.current_period_start,
                    period_end=subscription.current_period_end,
                    paid_at=now,
                )
                already_processed = False

            plan = await self.catalog.get(subscription.plan_id)

        outcome = CaptureOutcome(
            payment=payment,
            subscription=subscription,
            plan=plan,
            invoice=invoice,
            already_processed=already_processed,
        )
        if already_processed:
            logger.info("Payment capture already applied", order_id=order_id, payment_id=payment.id)
            return outcome

        logger.info(
            "Payment captured",
            tenant_id=subscription.tenant_id,
            order_id=order_id,
            gateway_payment_id=gateway_payment_id,
            plan=plan.slug,
            period_end=subscription.current_period_end.isoformat(),
            invoice_number=invoice.invoice_number if invoice else None,
        )
        await notify_safely(
            self.subscriptions.notifier,
            subscription.owner_user_id,
            "GENERAL",
            "Payment successful",
            f"Payment of {format_money(create_money(invoice.total, invoice.currency))} received. "
            f"Your {plan.name} subscription is active until "
            f"{subscription.current_period_end:%d %b %Y}.",
            "/dashboard/subscription",
        )
        await audit_safely(
            self.subscriptions.auditor,
            subscription.owner_user_id,
            "PAYMENT",
            "Subscription",
            subscription.id,
            f"Payment {gateway_payment_id} captured for {plan.name} "
            f"({payment.billing_cycle.value.lower()})",
            tenant_id=subscription.tenant_id,
        )
        return outcome

    async def apply_failure(
        self,
        order_id: str,
        gateway_payment_id: str | None = None,
        error_code: str | None = None,
        error_description: str | None = None,
    ) -> BillingPaymentTable:
        """Mark the order's payment failed. The subscription is left as it is."""
        payment = await self.get_by_order(order_id)

        async with self.subscriptions.critical_section(payment.subscription_id):
            payment = await self._reload(payment.id)

            if payment.status == PaymentStatus.FAILED:
                return payment
            if payment.status != PaymentStatus.CREATED:
                raise StateConflictError(
                    "Cannot mark a captured payment as failed",
                    current_state=payment.status.value,
                    requested="fail",
                )

            payment.status = PaymentStatus.FAILED
            payment.failed_at = self.subscriptions.now()
            payment.error_code = error_code
            payment.error_description = error_description
            if gateway_payment_id and not payment.gateway_payment_id:
                payment.gateway_payment_id = gateway_payment_id

        logger.info(
            "Payment failed",
            order_id=order_id,
            payment_id=payment.id,
            error_code=error_code,
        )
        return payment

    async def apply_refund(self, gateway_payment_id: str) -> BillingPaymentTable:
        """Mark a captured payment refunded. Access is not revoked."""
        payment = await self._find_payment(
            BillingPaymentTable.gateway_payment_id == gateway_payment_id
        )
        if payment is None:
            raise PaymentNotFoundError(
                f"No payment found for {gateway_payment_id}", payment_id=gateway_payment_id
            )

        async with self.subscriptions.critical_section(payment.subscription_id):
            payment = await self._reload(payment.id)

            if payment.status == PaymentStatus.REFUNDED:
                return payment
            if payment.status != PaymentStatus.CAPTURED:
                raise StateConflictError(
                    "Only captured payments can be refunded",
                    current_state=payment.status.value,
                    requested="refund",
                )

            payment.status = PaymentStatus.REFUNDED
            payment.refunded_at = self.subscriptions.now()

        logger.info(
            "Payment refunded", payment_id=payment.id, gateway_payment_id=gateway_payment_id
        )
        return payment


__all__ = [
    "PaymentProcessor",
    "CheckoutOrder",
    "CaptureOutcome",
    "generate_receipt",
]
