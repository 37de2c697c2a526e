"""Tests for the entitlement guard."""

import pytest

from musterbook.platform.billing.enums import Feature, SubscriptionStatus
from musterbook.platform.billing.exceptions import (
    LimitExceededError,
    SubscriptionAccessError,
    SubscriptionNotFoundError,
)
from tests.billing.factories import TENANT_ID

pytestmark = pytest.mark.integration


class TestStatusGate:
    async def test_trial_allowed(self, guard, trial):
        context = await guard.check(TENANT_ID)

        assert context.subscription.status == SubscriptionStatus.TRIAL
        assert context.plan.slug == "starter"
        assert context.seats is None

    async def test_no_subscription(self, guard, plans):
        with pytest.raises(SubscriptionNotFoundError) as exc_info:
            await guard.check(TENANT_ID)

        assert exc_info.value.redirect_to == "/dashboard/subscription"

    async def test_expired_trial_denied_on_day_fifteen(self, guard, trial, clock):
        clock.advance(days=15)

        with pytest.raises(SubscriptionAccessError) as exc_info:
            await guard.check(TENANT_ID)

        error = exc_info.value
        assert error.error_code == "TRIAL_EXPIRED"
        assert error.status_code == 403
        assert error.redirect_to == "/dashboard/subscription"

    @pytest.mark.parametrize(
        ("days", "code"),
        [(31, "SUBSCRIPTION_PAST_DUE"), (34, "SUBSCRIPTION_SUSPENDED")],
    )
    async def test_lapsed_paid_subscription_denied(self, guard, active, clock, days, code):
        clock.advance(days=days)

        with pytest.raises(SubscriptionAccessError) as exc_info:
            await guard.check(TENANT_ID)

        assert exc_info.value.error_code == code

    async def test_cancelled_denied(self, guard, service, trial):
        await service.cancel(TENANT_ID)

        with pytest.raises(SubscriptionAccessError) as exc_info:
            await guard.check(TENANT_ID)

        assert exc_info.value.error_code == "SUBSCRIPTION_INACTIVE"

    async def test_pending_cancellation_keeps_access(self, guard, service, active):
        await service.cancel(TENANT_ID)

        context = await guard.check(TENANT_ID)

        assert context.subscription.status == SubscriptionStatus.ACTIVE


class TestSeatGate:
    async def test_below_limit(self, guard, trial, seat_directory):
        seat_directory.set_seats(TENANT_ID, 24)

        context = await guard.check(TENANT_ID, adds_seat=True)

        assert context.seats == 24

    async def test_at_limit_denied_with_upgrade_hint(self, guard, trial, seat_directory):
        seat_directory.set_seats(TENANT_ID, 25)

        with pytest.raises(LimitExceededError) as exc_info:
            await guard.check(TENANT_ID, adds_seat=True)

        error = exc_info.value
        assert error.error_code == "EMPLOYEE_LIMIT_REACHED"
        assert error.context["current_count"] == 25
        assert error.context["max_employees"] == 25
        assert error.context["upgrade_to"] == "professional"

    async def test_reads_are_not_seat_gated(self, guard, trial, seat_directory):
        seat_directory.set_seats(TENANT_ID, 40)

        await guard.check(TENANT_ID)

    async def test_unlimited_plan(self, guard, service, plans, seat_directory):
        await service.start_trial(TENANT_ID, plan_slug="enterprise")
        seat_directory.set_seats(TENANT_ID, 10_000)

        context = await guard.check(TENANT_ID, adds_seat=True)

        assert context.plan.is_unlimited


class TestFeatureGate:
    async def test_feature_missing_on_starter(self, guard, trial):
        with pytest.raises(LimitExceededError) as exc_info:
            await guard.check(TENANT_ID, feature=Feature.PAYROLL)

        error = exc_info.value
        assert error.error_code == "FEATURE_NOT_AVAILABLE"
        assert error.context["feature"] == "payroll"
        assert error.context["upgrade_to"] == "professional"

    async def test_feature_only_on_enterprise(self, guard, active):
        with pytest.raises(LimitExceededError) as exc_info:
            await guard.check(TENANT_ID, feature=Feature.SLA)

        assert exc_info.value.context["upgrade_to"] == "enterprise"

    async def test_feature_available(self, guard, active):
        context = await guard.check(TENANT_ID, feature=Feature.PAYROLL)

        assert context.plan.slug == "professional"
