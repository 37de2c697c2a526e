"""
Payment reconciliation.

Checkout orders that never received a capture or failure are closed out as
failed once they are old enough that the gateway will no longer complete them,
unless the gateway reports them paid.
Runs out of band from the CLI.
"""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from sqlalchemy import select

from musterbook.platform.billing.enums import PaymentStatus
from musterbook.platform.billing.exceptions import GatewayError, StateConflictError
from musterbook.platform.billing.models import BillingPaymentTable
from musterbook.platform.billing.money_utils import format_money, money_handler
from musterbook.platform.billing.payments import PaymentProcessor

logger = structlog.get_logger(__name__)

ORDER_EXPIRED = "ORDER_EXPIRED"


@dataclass
class ReconciliationReport:
    examined: int = 0
    expired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class PaymentReconciler:
    """Expires stale CREATED payments the gateway never completed."""

    def __init__(self, processor: PaymentProcessor) -> None:
        self.processor = processor
        self.session = processor.session
        self.subscriptions = processor.subscriptions

    async def expire_stale_orders(
        self, older_than: timedelta | None = None
    ) -> ReconciliationReport:
        """Mark CREATED payments older than ``older_than`` as FAILED."""
        older_than = older_than or timedelta(hours=self.subscriptions.config.stale_order_hours)
        cutoff = self.subscriptions.now() - older_than

        result = await self.session.execute(
            select(BillingPaymentTable.gateway_order_id)
            .where(
                BillingPaymentTable.status == PaymentStatus.CREATED,
                BillingPaymentTable.created_at < cutoff,
            )
            .order_by(BillingPaymentTable.created_at)
        )
        order_ids = list(result.scalars().all())

        report = ReconciliationReport(examined=len(order_ids))
        for order_id in order_ids:
            if await self._keep_open(order_id):
                report.skipped.append(order_id)
                continue
            try:
                payment = await self.processor.apply_failure(
                    order_id,
                    error_code=ORDER_EXPIRED,
                    error_description=f"Order not completed within {older_than}",
                )
            except StateConflictError:
                # Captured after the scan
                report.skipped.append(order_id)
                continue
            if payment.error_code == ORDER_EXPIRED:
                report.expired.append(order_id)
            else:
                report.skipped.append(order_id)

        logger.info(
            "Stale order reconciliation complete",
            cutoff=cutoff.isoformat(),
            examined=report.examined,
            expired=len(report.expired),
            skipped=len(report.skipped),
        )
        return report

    async def _keep_open(self, order_id: str) -> bool:
        """
        Whether the order must stay CREATED.

        Orders the gateway reports as paid are left for the capture webhook, and
        so are orders whose status cannot be fetched.
        """
        gateway = self.processor.gateway
        if not gateway.is_configured:
            return False
        try:
            order = await gateway.fetch_order(order_id)
        except GatewayError as e:
            logger.warning(
                "Could not check stale order at gateway", order_id=order_id, error=e.message
            )
            return True
        if order.status != "paid":
            return False

        amount = money_handler.from_minor_units(order.amount, order.currency)
        logger.warning(
            "Stale order is paid at the gateway, awaiting capture",
            order_id=order_id,
            amount=format_money(amount),
        )
        return True


__all__ = ["PaymentReconciler", "ReconciliationReport", "ORDER_EXPIRED"]
