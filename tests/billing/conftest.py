"""Fixtures for billing tests: controllable clock, fake gateway, wired services and plans."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.clock import ManualClock
from musterbook.platform.billing.collaborators import InMemorySeatDirectory
from musterbook.platform.billing.config import BillingConfig, LifecycleConfig
from musterbook.platform.billing.dependencies import BillingRuntime
from musterbook.platform.billing.entitlements import EntitlementGuard
from musterbook.platform.billing.enums import SubscriptionStatus
from musterbook.platform.billing.locks import SubscriptionLockRegistry
from musterbook.platform.billing.payments import PaymentProcessor
from musterbook.platform.billing.subscriptions import SubscriptionService
from musterbook.platform.billing.webhooks import WebhookIngestionService
from musterbook.platform.db import configure_session_maker, get_async_session
from musterbook.platform.main import create_app
from tests.billing.factories import OWNER_ID, START, TENANT_ID, FakeGateway, pay


@pytest.fixture
def clock() -> ManualClock:
    """Controllable clock starting at 2026-01-01 09:00 UTC."""
    return ManualClock(START)


@pytest.fixture
def lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def seat_directory() -> InMemorySeatDirectory:
    return InMemorySeatDirectory()


@pytest.fixture
def notifier() -> MagicMock:
    sender = MagicMock()
    sender.notify = AsyncMock()
    return sender


@pytest.fixture
def auditor() -> MagicMock:
    recorder = MagicMock()
    recorder.record = AsyncMock()
    return recorder


@pytest.fixture
def locks() -> SubscriptionLockRegistry:
    return SubscriptionLockRegistry()


@pytest.fixture
def make_service(clock, lifecycle_config, seat_directory, notifier, auditor, locks):
    """Build a SubscriptionService bound to the given session, sharing collaborators."""

    def _make(session) -> SubscriptionService:
        return SubscriptionService(
            session,
            clock=clock,
            config=lifecycle_config,
            seat_directory=seat_directory,
            notifier=notifier,
            auditor=auditor,
            locks=locks,
        )

    return _make


@pytest.fixture
def make_processor(make_service, gateway):
    def _make(session) -> PaymentProcessor:
        return PaymentProcessor(session, gateway, make_service(session))

    return _make


@pytest.fixture
def service(async_session, make_service) -> SubscriptionService:
    return make_service(async_session)


@pytest.fixture
def processor(async_session, make_processor) -> PaymentProcessor:
    return make_processor(async_session)


@pytest.fixture
def webhooks(gateway, processor) -> WebhookIngestionService:
    return WebhookIngestionService(gateway, processor)


@pytest.fixture
def guard(service) -> EntitlementGuard:
    return EntitlementGuard(service)


@pytest_asyncio.fixture
async def plans(session_maker) -> dict[str, Any]:
    """Default plans keyed by slug."""
    async with session_maker() as session:
        seeded = await PlanCatalog(session).seed_defaults()
    return {plan.slug: plan for plan in seeded}


@pytest_asyncio.fixture
async def trial(service, plans):
    """Tenant on a fresh Starter trial."""
    return await service.start_trial(TENANT_ID, owner_user_id=OWNER_ID)


@pytest_asyncio.fixture
async def active(processor, trial, plans):
    """Tenant with a paid monthly Professional subscription."""
    _, outcome = await pay(processor, plans["professional"].id)
    assert outcome.subscription.status == SubscriptionStatus.ACTIVE
    return outcome


@pytest.fixture
def runtime(gateway, clock, lifecycle_config, seat_directory, notifier, auditor, locks):
    return BillingRuntime(
        config=BillingConfig(gateway=gateway.config, lifecycle=lifecycle_config),
        gateway=gateway,
        clock=clock,
        seat_directory=seat_directory,
        notifier=notifier,
        auditor=auditor,
        locks=locks,
    )


@pytest.fixture
def app(runtime, session_maker):
    """Billing application backed by the test database."""
    app = create_app(runtime)

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    configure_session_maker(session_maker)
    try:
        yield app
    finally:
        configure_session_maker(None)
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    """HTTP client for the billing API."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
