"""
Billing system exceptions.

Custom exceptions for subscription and payment operations with clear error messages.
Every error carries a machine-readable code, an HTTP status, context, a recovery
hint and a client redirect so thin clients can branch without parsing prose.
"""

from typing import Any

from musterbook.platform.settings import get_settings


def subscription_redirect() -> str:
    """Client route that billing denials send the user to."""
    return get_settings().billing.subscription_redirect


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
        redirect_to: Client route the user should be sent to, if any
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
        redirect_to: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        self.redirect_to = redirect_to
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
            "redirect_to": self.redirect_to,
        }


class ValidationError(BillingError):
    """Missing or malformed request data. User-correctable."""

    def __init__(self, message: str, field: str | None = None, **context: Any) -> None:
        if field:
            context["field"] = field
        super().__init__(
            message,
            "VALIDATION_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Correct the request and try again",
        )


class NotFoundError(BillingError):
    """A subscription, plan or payment does not exist."""

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_FOUND",
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
        redirect_to: str | None = None,
    ):
        super().__init__(
            message,
            error_code,
            status_code=404,
            context=context,
            recovery_hint=recovery_hint,
            redirect_to=redirect_to,
        )


class PlanNotFoundError(NotFoundError):
    """Subscription plan not found error."""

    def __init__(self, message: str, plan_id: str | None = None) -> None:
        context = {}
        if plan_id:
            context["plan_id"] = plan_id

        super().__init__(
            message,
            "PLAN_NOT_FOUND",
            context=context,
            recovery_hint="Verify the plan ID and ensure it exists and is active",
        )


class SubscriptionNotFoundError(NotFoundError):
    """The tenant has no subscription."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id

        super().__init__(
            message,
            "NO_SUBSCRIPTION",
            context=context,
            recovery_hint="Subscribe to a plan to continue",
            redirect_to=subscription_redirect(),
        )


class PaymentNotFoundError(NotFoundError):
    """No payment row matches the gateway reference."""

    def __init__(
        self, message: str, order_id: str | None = None, payment_id: str | None = None
    ) -> None:
        context = {}
        if order_id:
            context["order_id"] = order_id
        if payment_id:
            context["payment_id"] = payment_id

        super().__init__(
            message,
            "PAYMENT_NOT_FOUND",
            context=context,
            recovery_hint="Start a new checkout to create a payment order",
        )


class GatewayError(BillingError):
    """The payment provider was unreachable or rejected the call. Retryable."""

    def __init__(
        self,
        message: str,
        error_code: str = "GATEWAY_ERROR",
        status_code: int = 502,
        upstream_status: int | None = None,
    ) -> None:
        context = {}
        if upstream_status is not None:
            context["upstream_status"] = upstream_status

        super().__init__(
            message,
            error_code,
            status_code=status_code,
            context=context,
            recovery_hint="Please try again in a few moments",
        )
        self.upstream_status = upstream_status


class SignatureError(BillingError):
    """Signature verification failed. Treated as a security event, never retried."""

    def __init__(self, message: str, source: str | None = None) -> None:
        context = {}
        if source:
            context["source"] = source

        super().__init__(
            message,
            "INVALID_SIGNATURE",
            status_code=400,
            context=context,
            recovery_hint="Do not retry; contact support if you believe the payment succeeded",
        )


class StateConflictError(BillingError):
    """Transition invalid for the current status."""

    def __init__(
        self,
        message: str,
        current_state: str | None = None,
        requested: str | None = None,
        recovery_hint: str | None = None,
    ) -> None:
        context = {}
        if current_state:
            context["current_state"] = current_state
        if requested:
            context["requested"] = requested

        super().__init__(
            message,
            "INVALID_SUBSCRIPTION_STATE",
            status_code=409,
            context=context,
            recovery_hint=recovery_hint or "Refresh the subscription status and try again",
        )


class LimitExceededError(BillingError):
    """Seat or feature ceiling reached. Carries upgrade guidance."""

    def __init__(
        self,
        message: str,
        error_code: str,
        context: dict[str, Any] | None = None,
        upgrade_to: str | None = None,
    ) -> None:
        context = dict(context or {})
        if upgrade_to:
            context["upgrade_to"] = upgrade_to

        super().__init__(
            message,
            error_code,
            status_code=403,
            context=context,
            recovery_hint="Upgrade your plan to unlock more capacity",
            redirect_to=subscription_redirect(),
        )


class SubscriptionAccessError(BillingError):
    """Subscription status does not allow access (expired, past due, suspended, cancelled)."""

    def __init__(self, message: str, error_code: str, status: str) -> None:
        super().__init__(
            message,
            error_code,
            status_code=403,
            context={"status": status},
            recovery_hint="Renew your subscription to continue",
            redirect_to=subscription_redirect(),
        )


class InvoiceNumberCollisionError(BillingError):
    """Invoice number generation kept colliding. Retryable."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(
            message,
            "INVOICE_NUMBER_COLLISION",
            status_code=503,
            context={"attempts": attempts},
            recovery_hint="Retry the request",
        )

