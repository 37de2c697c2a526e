"""Tests for stale order reconciliation."""

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from musterbook.platform.billing.enums import PaymentStatus, SubscriptionStatus
from musterbook.platform.billing.exceptions import GatewayError
from musterbook.platform.billing.reconciliation import ORDER_EXPIRED, PaymentReconciler
from tests.billing.factories import TENANT_ID, pay

pytestmark = pytest.mark.integration


class TestExpireStaleOrders:
    async def test_stale_order_expired(self, processor, service, trial, plans, clock):
        order = await processor.create_order(TENANT_ID, plans["professional"].id)
        clock.advance(hours=25)

        report = await PaymentReconciler(processor).expire_stale_orders()

        assert report.examined == 1
        assert report.expired == [order.order_id]
        payment = await processor.get_by_order(order.order_id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.error_code == ORDER_EXPIRED
        assert (await service.get_for_tenant(TENANT_ID)).status == SubscriptionStatus.TRIAL

    async def test_recent_order_untouched(self, processor, trial, plans, clock):
        stale = await processor.create_order(TENANT_ID, plans["professional"].id)
        clock.advance(hours=25)
        fresh = await processor.create_order(TENANT_ID, plans["starter"].id)

        report = await PaymentReconciler(processor).expire_stale_orders()

        assert report.expired == [stale.order_id]
        assert (await processor.get_by_order(fresh.order_id)).status == PaymentStatus.CREATED

    async def test_custom_threshold(self, processor, trial, plans, clock):
        order = await processor.create_order(TENANT_ID, plans["professional"].id)
        clock.advance(hours=2)

        report = await PaymentReconciler(processor).expire_stale_orders(timedelta(hours=1))

        assert report.expired == [order.order_id]

    async def test_captured_orders_not_examined(self, processor, trial, plans, clock):
        await pay(processor, plans["professional"].id)
        clock.advance(days=2)

        report = await PaymentReconciler(processor).expire_stale_orders()

        assert report.examined == 0
        assert report.expired == []

    async def test_order_paid_at_gateway_left_open(self, processor, trial, plans, gateway, clock):
        order = await processor.create_order(TENANT_ID, plans["professional"].id)
        gateway.order_status[order.order_id] = "paid"
        clock.advance(hours=25)

        with capture_logs() as logs:
            report = await PaymentReconciler(processor).expire_stale_orders()

        assert report.expired == []
        assert report.skipped == [order.order_id]
        assert (await processor.get_by_order(order.order_id)).status == PaymentStatus.CREATED
        paid = [e for e in logs if e["event"].startswith("Stale order is paid")]
        assert paid[0]["amount"] == "₹1,499.00"

    async def test_gateway_lookup_failure_leaves_order_open(
        self, processor, trial, plans, gateway, clock
    ):
        order = await processor.create_order(TENANT_ID, plans["professional"].id)
        gateway.fetch_fail_with = GatewayError("Payment gateway timed out", status_code=504)
        clock.advance(hours=25)

        report = await PaymentReconciler(processor).expire_stale_orders()

        assert report.skipped == [order.order_id]
        assert (await processor.get_by_order(order.order_id)).status == PaymentStatus.CREATED
