"""
Invoice ledger.

Invoices are append-only: one per captured payment, never edited. The caller
owns the transaction so the invoice commits together with the payment and
subscription changes that produced it.
"""

import secrets
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musterbook.platform.billing.config import LifecycleConfig
from musterbook.platform.billing.enums import InvoiceStatus
from musterbook.platform.billing.exceptions import InvoiceNumberCollisionError
from musterbook.platform.billing.models import BillingInvoiceTable, BillingPaymentTable
from musterbook.platform.billing.money_utils import invoice_amounts

logger = structlog.get_logger(__name__)


def generate_invoice_number(issued_at: datetime) -> str:
    """``INV-YYYYMM-XXXXXXXX`` with eight random uppercase hex digits."""
    return f"INV-{issued_at:%Y%m}-{secrets.token_hex(4).upper()}"


class InvoiceLedger:
    """Issues and lists invoices."""

    def __init__(
        self,
        session: AsyncSession,
        config: LifecycleConfig | None = None,
        number_factory: Callable[[datetime], str] = generate_invoice_number,
    ) -> None:
        self.session = session
        self.config = config or LifecycleConfig()
        self.number_factory = number_factory

    async def get_for_payment(self, payment_id: str) -> BillingInvoiceTable | None:
        result = await self.session.execute(
            select(BillingInvoiceTable).where(BillingInvoiceTable.payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    async def issue(
        self,
        payment: BillingPaymentTable,
        period_start: datetime,
        period_end: datetime,
        paid_at: datetime,
    ) -> BillingInvoiceTable:
        """
        Create the invoice for a captured payment.

        Returns the existing invoice if the payment already has one. Does not
        commit.

        Raises:
            InvoiceNumberCollisionError: If no unused number was found
        """
        existing = await self.get_for_payment(payment.id)
        if existing is not None:
            return existing

        amounts = invoice_amounts(Decimal(payment.amount), payment.currency, self.config.tax_rate)

        invoice = BillingInvoiceTable(
            subscription_id=payment.subscription_id,
            payment_id=payment.id,
            invoice_number=await self._allocate_number(paid_at),
            subtotal=amounts.subtotal,
            tax=amounts.tax,
            total=amounts.total,
            currency=payment.currency,
            period_start=period_start,
            period_end=period_end,
            status=InvoiceStatus.PAID,
            paid_at=paid_at,
            due_date=paid_at,
        )
        self.session.add(invoice)
        await self.session.flush()

        logger.info(
            "Invoice issued",
            invoice_number=invoice.invoice_number,
            payment_id=payment.id,
            subscription_id=payment.subscription_id,
            total=str(invoice.total),
        )
        return invoice

    async def _allocate_number(self, issued_at: datetime) -> str:
        attempts = self.config.invoice_number_attempts
        for attempt in range(1, attempts + 1):
            candidate = self.number_factory(issued_at)
            taken = await self.session.execute(
                select(BillingInvoiceTable.id).where(
                    BillingInvoiceTable.invoice_number == candidate
                )
            )
            if taken.scalar_one_or_none() is None:
                return candidate
            logger.warning("Invoice number collision", invoice_number=candidate, attempt=attempt)

        raise InvoiceNumberCollisionError(
            "Could not allocate a unique invoice number", attempts=attempts
        )

    async def list_for_subscription(self, subscription_id: str) -> list[BillingInvoiceTable]:
        """Invoices for a subscription, newest first."""
        result = await self.session.execute(
            select(BillingInvoiceTable)
            .where(BillingInvoiceTable.subscription_id == subscription_id)
            .order_by(BillingInvoiceTable.paid_at.desc(), BillingInvoiceTable.created_at.desc())
        )
        return list(result.scalars().all())


__all__ = ["InvoiceLedger", "generate_invoice_number"]
