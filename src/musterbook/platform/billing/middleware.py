"""
Billing module middleware for error handling and logging.

Provides centralized error handling and request logging with correlation ids.
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from musterbook.platform.billing.exceptions import BillingError, ValidationError
from musterbook.platform.settings import settings

logger = structlog.get_logger(__name__)


def _correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if existing:
        return existing
    header = settings.observability.correlation_id_header
    correlation_id = request.headers.get(header) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    return correlation_id


def billing_error_response(request: Request, error: BillingError) -> JSONResponse:
    """Render a BillingError as the standard JSON error body."""
    correlation_id = _correlation_id(request)
    return JSONResponse(
        status_code=error.status_code,
        content={
            "error": error.to_dict(),
            "correlation_id": correlation_id,
            "request_path": request.url.path,
        },
        headers={settings.observability.correlation_id_header: correlation_id},
    )


class BillingErrorMiddleware(BaseHTTPMiddleware):
    """
    Middleware for handling billing-specific errors with proper logging.

    Features:
    - Converts BillingError exceptions to proper JSON responses
    - Logs all billing errors with context
    - Adds correlation IDs for request tracing
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process requests with error handling and logging."""
        correlation_id = _correlation_id(request)
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        context: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }

        start_time = time.time()

        try:
            response = await call_next(request)

            logger.info(
                "Billing request completed",
                **context,
                status_code=response.status_code,
                duration=time.time() - start_time,
            )
            response.headers.setdefault(
                settings.observability.correlation_id_header, correlation_id
            )
            return response

        except BillingError as e:
            logger.error(
                "Billing error occurred",
                **context,
                error_code=e.error_code,
                error_message=e.message,
                error_context=e.context,
                duration=time.time() - start_time,
            )
            return billing_error_response(request, e)

        except Exception as e:
            logger.exception(
                "Unexpected error in billing request",
                **context,
                error=str(e),
                duration=time.time() - start_time,
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": {
                        "error_code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred processing your request",
                        "status_code": 500,
                        "recovery_hint": (
                            "Please try again later or contact support if the issue persists"
                        ),
                    },
                    "correlation_id": correlation_id,
                    "request_path": request.url.path,
                },
                headers={settings.observability.correlation_id_header: correlation_id},
            )
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Exception handler so errors raised in dependencies render like route errors."""
    logger.info(
        "Billing request rejected",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
    )
    return billing_error_response(request, exc)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render malformed request bodies as billing validation errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or None
    error = ValidationError(
        first.get("msg", "Invalid request"),
        field=field,
        errors=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
    )
    return billing_error_response(request, error)


def setup_billing_middleware(app: FastAPI) -> None:
    """
    Configure billing error handling for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(BillingError, billing_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_middleware(BillingErrorMiddleware)

    logger.info("Billing middleware configured")
