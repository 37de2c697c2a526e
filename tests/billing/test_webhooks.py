"""Integration tests for gateway webhook ingestion."""

import asyncio
import json
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from musterbook.platform.billing.enums import PaymentStatus, SubscriptionStatus
from musterbook.platform.billing.exceptions import SignatureError
from musterbook.platform.billing.models import BillingInvoiceTable
from musterbook.platform.billing.webhooks import ACK, WebhookIngestionService
from tests.billing.factories import (
    START,
    TENANT_ID,
    checkout_signature,
    pay,
    webhook_body,
    webhook_signature,
)

pytestmark = pytest.mark.integration


def captured_event(order_id: str, payment_id: str, method: str = "card") -> bytes:
    return webhook_body(
        "payment.captured",
        payment={"id": payment_id, "order_id": order_id, "method": method, "status": "captured"},
    )


async def invoice_count(session) -> int:
    result = await session.execute(select(func.count()).select_from(BillingInvoiceTable))
    return result.scalar_one()


@pytest_asyncio.fixture
async def order(processor, trial, plans):
    return await processor.create_order(TENANT_ID, plans["professional"].id)


class TestSignature:
    async def test_invalid_signature_rejected(self, webhooks, service, order):
        body = captured_event(order.order_id, "pay_1")

        with pytest.raises(SignatureError) as exc_info:
            await webhooks.ingest(body, "0" * 64)

        assert exc_info.value.context["source"] == "webhook"
        assert (await service.get_for_tenant(TENANT_ID)).status == SubscriptionStatus.TRIAL

    async def test_missing_signature_rejected(self, webhooks, order):
        with pytest.raises(SignatureError):
            await webhooks.ingest(captured_event(order.order_id, "pay_1"), None)

    async def test_signature_checked_against_raw_bytes(self, webhooks, order):
        body = captured_event(order.order_id, "pay_1")
        signature = webhook_signature(body)
        reformatted = json.dumps(json.loads(body), indent=2).encode()

        with pytest.raises(SignatureError):
            await webhooks.ingest(reformatted, signature)


class TestCapture:
    async def test_capture_activates_subscription(self, webhooks, processor, service, order):
        body = captured_event(order.order_id, "pay_1", method="netbanking")

        ack = await webhooks.ingest(body, webhook_signature(body))

        assert ack == ACK
        sub = await service.get_for_tenant(TENANT_ID)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_end == START + timedelta(days=30)
        payment = await processor.get_by_order(order.order_id)
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.method == "netbanking"

    async def test_replayed_delivery_applied_once(self, webhooks, service, order, async_session):
        body = captured_event(order.order_id, "pay_1")
        signature = webhook_signature(body)

        for _ in range(3):
            assert await webhooks.ingest(body, signature) == ACK

        assert await invoice_count(async_session) == 1
        sub = await service.get_for_tenant(TENANT_ID)
        assert sub.current_period_end == START + timedelta(days=30)

    async def test_webhook_after_checkout_callback(
        self, webhooks, processor, service, trial, plans, async_session
    ):
        order, _ = await pay(processor, plans["professional"].id, payment_id="pay_1")
        body = captured_event(order.order_id, "pay_1")

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

        assert await invoice_count(async_session) == 1
        sub = await service.get_for_tenant(TENANT_ID)
        assert sub.current_period_end == START + timedelta(days=30)

    async def test_renewal_captured_after_period_lapsed(
        self, webhooks, processor, service, active, plans, clock
    ):
        clock.advance(days=31)
        assert (await service.get_for_tenant(TENANT_ID)).status == SubscriptionStatus.PAST_DUE
        renewal = await processor.create_order(TENANT_ID, plans["professional"].id)
        body = captured_event(renewal.order_id, "pay_renewal")

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

        payment = await processor.get_by_order(renewal.order_id)
        assert payment.status == PaymentStatus.CAPTURED
        sub = await service.get_for_tenant(TENANT_ID)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == START + timedelta(days=31)
        assert sub.current_period_end == START + timedelta(days=61)

    async def test_callback_and_webhook_race(self, session_maker, make_processor, gateway, order):
        body = captured_event(order.order_id, "pay_1")

        async with session_maker() as callback_session, session_maker() as webhook_session:
            callback = make_processor(callback_session)
            webhooks = WebhookIngestionService(gateway, make_processor(webhook_session))

            outcome, ack = await asyncio.gather(
                callback.verify_payment(
                    TENANT_ID, order.order_id, "pay_1", checkout_signature(order.order_id, "pay_1")
                ),
                webhooks.ingest(body, webhook_signature(body)),
            )

        assert ack == ACK
        assert outcome.subscription.status == SubscriptionStatus.ACTIVE

        async with session_maker() as check:
            assert await invoice_count(check) == 1
            sub = await make_processor(check).subscriptions.get_for_tenant(TENANT_ID)
            assert sub.current_period_end == START + timedelta(days=30)

    async def test_unknown_order_acknowledged(self, webhooks, trial, async_session):
        body = captured_event("order_unknown", "pay_1")

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK
        assert await invoice_count(async_session) == 0


class TestOtherEvents:
    async def test_failed_payment(self, webhooks, processor, service, order):
        body = webhook_body(
            "payment.failed",
            payment={
                "id": "pay_f1",
                "order_id": order.order_id,
                "error_code": "BAD_REQUEST_ERROR",
                "error_description": "Payment was declined by the bank",
            },
        )

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

        payment = await processor.get_by_order(order.order_id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.error_description == "Payment was declined by the bank"
        assert (await service.get_for_tenant(TENANT_ID)).status == SubscriptionStatus.TRIAL

    async def test_refund(self, webhooks, processor, service, trial, plans):
        order, _ = await pay(processor, plans["professional"].id, payment_id="pay_1")
        body = webhook_body("refund.created", refund={"id": "rfnd_1", "payment_id": "pay_1"})

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

        payment = await processor.get_by_order(order.order_id)
        assert payment.status == PaymentStatus.REFUNDED
        assert (await service.get_for_tenant(TENANT_ID)).status == SubscriptionStatus.ACTIVE

    async def test_unhandled_event_acknowledged(self, webhooks):
        body = webhook_body("subscription.charged", subscription={"id": "sub_1"})

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]", b"\xff\xfe"])
    async def test_malformed_payload_acknowledged(self, webhooks, body):
        assert await webhooks.ingest(body, webhook_signature(body)) == ACK

    async def test_incomplete_entity_acknowledged(self, webhooks, order, processor):
        body = webhook_body("payment.captured", payment={"id": "pay_1"})

        assert await webhooks.ingest(body, webhook_signature(body)) == ACK
        assert (await processor.get_by_order(order.order_id)).status == PaymentStatus.CREATED
