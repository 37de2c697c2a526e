"""Tests for invoice numbering and the invoice ledger."""

import re
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from musterbook.platform.billing.config import LifecycleConfig
from musterbook.platform.billing.exceptions import InvoiceNumberCollisionError
from musterbook.platform.billing.invoices import InvoiceLedger, generate_invoice_number
from tests.billing.factories import START, TENANT_ID, pay


@pytest.mark.unit
class TestInvoiceNumber:
    def test_format(self):
        number = generate_invoice_number(datetime(2026, 3, 15, tzinfo=UTC))

        assert re.fullmatch(r"INV-202603-[0-9A-F]{8}", number)

    def test_numbers_vary(self):
        numbers = {generate_invoice_number(START) for _ in range(50)}
        assert len(numbers) == 50


@pytest.mark.integration
class TestInvoiceLedger:
    @pytest_asyncio.fixture
    async def open_payment(self, processor, active, plans):
        order = await processor.create_order(TENANT_ID, plans["professional"].id)
        return await processor.get_by_order(order.order_id)

    async def test_collision_retries_with_new_number(self, async_session, active, open_payment):
        taken = active.invoice.invoice_number
        candidates = iter([taken, taken, "INV-202601-0000ABCD"])
        ledger = InvoiceLedger(
            async_session, LifecycleConfig(), number_factory=lambda issued_at: next(candidates)
        )

        invoice = await ledger.issue(
            open_payment,
            period_start=START,
            period_end=START + timedelta(days=30),
            paid_at=START,
        )

        assert invoice.invoice_number == "INV-202601-0000ABCD"
        assert invoice.total == Decimal("1768.82")

    async def test_collision_exhaustion(self, async_session, active, open_payment):
        taken = active.invoice.invoice_number
        ledger = InvoiceLedger(
            async_session,
            LifecycleConfig(invoice_number_attempts=3),
            number_factory=lambda issued_at: taken,
        )

        with pytest.raises(InvoiceNumberCollisionError) as exc_info:
            await ledger.issue(
                open_payment,
                period_start=START,
                period_end=START + timedelta(days=30),
                paid_at=START,
            )

        assert exc_info.value.context["attempts"] == 3
        assert exc_info.value.status_code == 503

    async def test_issue_returns_existing_invoice(self, async_session, active):
        ledger = InvoiceLedger(async_session)

        invoice = await ledger.issue(
            active.payment,
            period_start=START,
            period_end=START + timedelta(days=30),
            paid_at=START + timedelta(days=1),
        )

        assert invoice.id == active.invoice.id

    async def test_list_newest_first(self, service, processor, active, plans, clock):
        clock.advance(days=5)
        _, renewal = await pay(processor, plans["professional"].id)

        invoices = await service.list_invoices(TENANT_ID)

        assert [i.id for i in invoices] == [renewal.invoice.id, active.invoice.id]
        assert invoices[0].paid_at == START + timedelta(days=5)
