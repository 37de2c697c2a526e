"""
Main FastAPI application entry point for the Musterbook billing service.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from musterbook.platform.billing.dependencies import BillingRuntime
from musterbook.platform.billing.middleware import setup_billing_middleware
from musterbook.platform.billing.router import router as billing_router
from musterbook.platform.db import check_database_health
from musterbook.platform.logging import setup_logging
from musterbook.platform.settings import settings

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle events."""
    runtime: BillingRuntime = app.state.billing

    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
        gateway_configured=runtime.gateway.is_configured,
    )
    if not runtime.gateway.is_configured:
        logger.warning("Payment gateway is not configured; checkout is disabled")

    yield

    close = getattr(runtime.gateway, "close", None)
    if close is not None:
        await close()
    logger.info("service.shutdown.complete")


def create_app(runtime: BillingRuntime | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        runtime: Billing collaborators (gateway, clock, seat directory, notifier,
            audit recorder). Defaults are built from settings.
    """
    setup_logging()

    app = FastAPI(
        title="Musterbook Billing",
        description="Subscription and billing lifecycle for Musterbook HR",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    app.state.billing = runtime or BillingRuntime()

    setup_billing_middleware(app)
    app.include_router(billing_router, prefix=settings.api_prefix)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        database_ok = await check_database_health()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "version": settings.app_version,
        }

    return app


# For development server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "musterbook.platform.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.observability.log_level.value.lower(),
    )
