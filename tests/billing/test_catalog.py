"""Tests for the plan catalog."""

from decimal import Decimal

import pytest

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.enums import BillingCycle
from musterbook.platform.billing.exceptions import PlanNotFoundError, ValidationError
from musterbook.platform.billing.plans_seed import DEFAULT_PLANS
from musterbook.platform.billing.schemas import PlanCreateRequest, PlanUpdateRequest

pytestmark = pytest.mark.integration


@pytest.fixture
def catalog(async_session) -> PlanCatalog:
    return PlanCatalog(async_session)


class TestSeeding:
    async def test_seeds_three_tiers_in_order(self, catalog):
        await catalog.seed_defaults()

        plans = await catalog.list_active()

        assert [p.slug for p in plans] == ["starter", "professional", "enterprise"]
        starter, professional, enterprise = plans
        assert starter.max_employees == 25
        assert Decimal(professional.monthly_price) == Decimal("1499")
        assert professional.has_payroll is True
        assert starter.has_payroll is False
        assert enterprise.is_unlimited
        assert enterprise.is_custom

    async def test_reseeding_is_idempotent(self, catalog):
        first = await catalog.seed_defaults()
        second = await catalog.seed_defaults()

        assert [p.id for p in first] == [p.id for p in second]
        assert all(p.version == 1 for p in second)

    async def test_reseeding_changed_values_bumps_version(self, catalog):
        await catalog.seed_defaults()
        changed = [dict(plan) for plan in DEFAULT_PLANS]
        changed[0]["monthly_price"] = Decimal("599")

        plans = await catalog.seed_defaults(changed)

        assert plans[0].version == 2
        assert Decimal(plans[0].monthly_price) == Decimal("599")
        assert plans[1].version == 1


class TestLookups:
    async def test_get_unknown_plan(self, catalog):
        with pytest.raises(PlanNotFoundError) as exc_info:
            await catalog.get("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.error_code == "PLAN_NOT_FOUND"

    async def test_deactivated_plan_hidden_but_resolvable(self, catalog, plans):
        starter = plans["starter"]

        await catalog.deactivate(starter.id)

        assert "starter" not in [p.slug for p in await catalog.list_active()]
        assert (await catalog.get(starter.id)).is_active is False
        with pytest.raises(PlanNotFoundError):
            await catalog.get_active(starter.id)
        with pytest.raises(PlanNotFoundError):
            await catalog.get_by_slug("starter")

    async def test_price_for_cycle(self, plans):
        professional = plans["professional"]
        assert professional.price_for(BillingCycle.MONTHLY) == Decimal("1499")
        assert professional.price_for(BillingCycle.YEARLY) == Decimal("14990")


class TestAdministration:
    async def test_create_plan(self, catalog):
        plan = await catalog.create(
            PlanCreateRequest(
                slug="team",
                name="Team",
                monthly_price=Decimal("999"),
                max_employees=75,
                sort_order=2,
                has_payroll=True,
            )
        )

        assert plan.version == 1
        assert plan.is_active
        assert (await catalog.get_by_slug("team")).id == plan.id

    async def test_duplicate_slug_rejected(self, catalog, plans):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.create(
                PlanCreateRequest(
                    slug="starter", name="Starter 2", monthly_price=Decimal("1"), max_employees=1
                )
            )

        assert exc_info.value.context["field"] == "slug"

    async def test_update_bumps_version(self, catalog, plans):
        plan = await catalog.update(
            plans["starter"].id, PlanUpdateRequest(max_employees=30, has_payroll=True)
        )

        assert plan.version == 2
        assert plan.max_employees == 30
        assert plan.has_payroll is True
        assert Decimal(plan.monthly_price) == Decimal("499")

    async def test_empty_update_is_noop(self, catalog, plans):
        plan = await catalog.update(plans["starter"].id, PlanUpdateRequest())
        assert plan.version == 1
