"""
Payment gateway adapter.

Client for a Razorpay-compatible REST API: order creation, checkout and
webhook signature verification, and payment lookups used to enrich captured
payments.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from musterbook.platform.billing.config import GatewayConfig, get_billing_config
from musterbook.platform.billing.exceptions import GatewayError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    """Order created at the gateway. ``amount`` is in minor units."""

    order_id: str
    amount: int
    currency: str
    receipt: str
    status: str | None = None


@dataclass(frozen=True)
class PaymentDetails:
    """Enrichment data for a gateway payment."""

    payment_id: str
    order_id: str | None
    method: str | None
    status: str | None
    amount: int | None = None
    error_code: str | None = None
    error_description: str | None = None


class PaymentGateway(Protocol):
    """Operations the billing services need from a payment provider."""

    @property
    def is_configured(self) -> bool: ...  # pragma: no cover

    @property
    def public_key(self) -> str: ...  # pragma: no cover

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, str] | None = None
    ) -> GatewayOrder: ...  # pragma: no cover

    async def fetch_order(self, order_id: str) -> GatewayOrder: ...  # pragma: no cover

    def verify_signature(
        self, order_id: str, payment_id: str, signature: str
    ) -> bool: ...  # pragma: no cover

    def verify_webhook_signature(
        self, raw_body: bytes, signature: str | None
    ) -> bool: ...  # pragma: no cover

    async def fetch_payment_details(
        self, payment_id: str
    ) -> PaymentDetails | None: ...  # pragma: no cover


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of ``payload`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class RazorpayGateway:
    """Razorpay REST client."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the gateway client.

        Args:
            config: Gateway credentials and timeouts, defaults to application settings
            transport: Optional httpx transport, used to stub the remote API
        """
        self.config = config or get_billing_config().gateway
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def public_key(self) -> str:
        return self.config.key_id

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                auth=httpx.BasicAuth(self.config.key_id, self.config.key_secret),
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated request to the gateway.

        Raises:
            GatewayError: On timeout, transport failure or a non-2xx response
        """
        if not self.is_configured:
            raise GatewayError(
                "Payment gateway is not configured",
                error_code="GATEWAY_NOT_CONFIGURED",
                status_code=503,
            )

        client = await self._get_client()

        try:
            response = await client.request(method=method, url=path, json=data)
        except httpx.TimeoutException as e:
            logger.error("Gateway request timeout", path=path, error=str(e))
            raise GatewayError(
                "Payment gateway timed out", error_code="GATEWAY_TIMEOUT", status_code=504
            ) from e
        except httpx.RequestError as e:
            logger.error("Gateway request error", path=path, error=str(e))
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            detail = _error_description(response)
            logger.warning(
                "Gateway rejected request",
                path=path,
                status_code=response.status_code,
                detail=detail,
            )
            raise GatewayError(
                f"Payment gateway error: {detail}", upstream_status=response.status_code
            )

        return response.json()

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, str] | None = None
    ) -> GatewayOrder:
        """Create an order for ``amount`` minor units."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                "Order amount must be a positive integer in minor units", field="amount"
            )

        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        body = await self._request("POST", "/orders", payload)

        order = GatewayOrder(
            order_id=body["id"],
            amount=int(body.get("amount", amount)),
            currency=body.get("currency", currency),
            receipt=body.get("receipt", receipt),
            status=body.get("status"),
        )
        logger.info("Gateway order created", order_id=order.order_id, receipt=receipt)
        return order

    async def fetch_order(self, order_id: str) -> GatewayOrder:
        """Current state of a gateway order (``created``, ``attempted`` or ``paid``)."""
        body = await self._request("GET", f"/orders/{order_id}")
        return GatewayOrder(
            order_id=body.get("id", order_id),
            amount=int(body.get("amount", 0)),
            currency=body.get("currency", "INR"),
            receipt=body.get("receipt", ""),
            status=body.get("status"),
        )

    async def fetch_payment_details(self, payment_id: str) -> PaymentDetails | None:
        """Look up a payment. Returns None on any failure."""
        try:
            body = await self._request("GET", f"/payments/{payment_id}")
        except GatewayError as e:
            logger.warning("Payment details lookup failed", payment_id=payment_id, error=e.message)
            return None

        return PaymentDetails(
            payment_id=body.get("id", payment_id),
            order_id=body.get("order_id"),
            method=body.get("method"),
            status=body.get("status"),
            amount=body.get("amount"),
            error_code=body.get("error_code"),
            error_description=body.get("error_description"),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Verify the checkout callback signature over ``order_id|payment_id``."""
        if not (self.config.key_secret and order_id and payment_id and signature):
            return False
        expected = compute_signature(
            self.config.key_secret, f"{order_id}|{payment_id}".encode("utf-8")
        )
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Verify a webhook signature over the exact bytes received."""
        if not (self.config.webhook_secret and signature):
            return False
        expected = compute_signature(self.config.webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return str(error["description"])
    return str(body)


__all__ = [
    "GatewayOrder",
    "PaymentDetails",
    "PaymentGateway",
    "RazorpayGateway",
    "compute_signature",
]
