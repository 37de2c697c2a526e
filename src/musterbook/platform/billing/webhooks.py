"""
Gateway webhook ingestion.

Deliveries are authenticated against the exact bytes received, then
dispatched to the payment processor. Once the signature checks out the
delivery is always acknowledged; every handler is idempotent.
"""

import json
from typing import Any

import structlog

from musterbook.platform.billing.enums import WebhookEventType
from musterbook.platform.billing.exceptions import BillingError, SignatureError
from musterbook.platform.billing.gateway import PaymentGateway
from musterbook.platform.billing.payments import PaymentProcessor

logger = structlog.get_logger(__name__)

ACK: dict[str, bool] = {"received": True}


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    """``payload.<name>.entity`` or an empty dict."""
    section = payload.get("payload", {}).get(name, {})
    entity = section.get("entity", {}) if isinstance(section, dict) else {}
    return entity if isinstance(entity, dict) else {}


class WebhookIngestionService:
    """Verifies and dispatches gateway webhook deliveries."""

    def __init__(self, gateway: PaymentGateway, processor: PaymentProcessor) -> None:
        self.gateway = gateway
        self.processor = processor

    async def ingest(self, raw_body: bytes, signature: str | None) -> dict[str, bool]:
        """
        Process one delivery.

        Raises:
            SignatureError: If the signature is missing or does not match
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning(
                "Webhook signature verification failed",
                has_signature=bool(signature),
                body_length=len(raw_body),
            )
            raise SignatureError("Invalid webhook signature", source="webhook")

        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Malformed webhook payload", error=str(e))
            return ACK

        if not isinstance(payload, dict):
            logger.error("Malformed webhook payload", payload_type=type(payload).__name__)
            return ACK

        event = payload.get("event")
        try:
            await self._dispatch(event, payload)
        except BillingError as e:
            logger.warning(
                "Webhook event not applied",
                event_type=event,
                error_code=e.error_code,
                error=e.message,
            )
        except Exception:
            logger.exception("Webhook processing failed", event_type=event)

        return ACK

    async def _dispatch(self, event: Any, payload: dict[str, Any]) -> None:
        try:
            event_type = WebhookEventType(event)
        except ValueError:
            logger.info("Ignoring unhandled webhook event", event_type=event)
            return

        if event_type == WebhookEventType.PAYMENT_CAPTURED:
            entity = _entity(payload, "payment")
            outcome = await self.processor.apply_capture(
                entity["order_id"],
                entity["id"],
                method=entity.get("method"),
            )
            logger.info(
                "Webhook capture processed",
                order_id=entity["order_id"],
                already_processed=outcome.already_processed,
            )

        elif event_type == WebhookEventType.PAYMENT_FAILED:
            entity = _entity(payload, "payment")
            await self.processor.apply_failure(
                entity["order_id"],
                entity.get("id"),
                error_code=entity.get("error_code"),
                error_description=entity.get("error_description"),
            )

        elif event_type == WebhookEventType.REFUND_CREATED:
            entity = _entity(payload, "refund")
            await self.processor.apply_refund(entity["payment_id"])


__all__ = ["WebhookIngestionService", "ACK"]
