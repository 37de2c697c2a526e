"""
Plan catalog.

Plans are read-mostly. Admin updates bump ``version`` and plans are never
deleted, only deactivated, so subscriptions and payments can always resolve
the plan they reference.
"""

from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musterbook.platform.billing.exceptions import PlanNotFoundError, ValidationError
from musterbook.platform.billing.models import BillingPlanTable
from musterbook.platform.billing.plans_seed import DEFAULT_PLANS
from musterbook.platform.billing.schemas import PlanCreateRequest, PlanUpdateRequest

logger = structlog.get_logger(__name__)


class PlanCatalog:
    """Reads and administers plan tiers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self) -> list[BillingPlanTable]:
        """Active plans in display order."""
        result = await self.session.execute(
            select(BillingPlanTable)
            .where(BillingPlanTable.is_active.is_(True))
            .order_by(BillingPlanTable.sort_order, BillingPlanTable.monthly_price)
        )
        return list(result.scalars().all())

    async def get(self, plan_id: str) -> BillingPlanTable:
        """Get a plan by id, active or not."""
        plan = await self.session.get(BillingPlanTable, plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
        return plan

    async def get_active(self, plan_id: str) -> BillingPlanTable:
        """Get a plan that can still be subscribed to."""
        plan = await self.get(plan_id)
        if not plan.is_active:
            raise PlanNotFoundError(f"Plan {plan_id} is no longer available", plan_id=plan_id)
        return plan

    async def get_by_slug(self, slug: str) -> BillingPlanTable:
        result = await self.session.execute(
            select(BillingPlanTable).where(BillingPlanTable.slug == slug)
        )
        plan = result.scalar_one_or_none()
        if plan is None or not plan.is_active:
            raise PlanNotFoundError(f"Plan '{slug}' not found", plan_id=slug)
        return plan

    async def create(self, data: PlanCreateRequest) -> BillingPlanTable:
        existing = await self.session.execute(
            select(BillingPlanTable.id).where(BillingPlanTable.slug == data.slug)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"Plan slug '{data.slug}' already exists", field="slug")

        plan = BillingPlanTable(**data.model_dump(), is_active=True, version=1)
        self.session.add(plan)
        await self.session.commit()

        logger.info("Plan created", plan_id=plan.id, slug=plan.slug)
        return plan

    async def update(self, plan_id: str, data: PlanUpdateRequest) -> BillingPlanTable:
        """Apply the supplied fields and bump the plan version."""
        plan = await self.get(plan_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return plan

        for field, value in changes.items():
            setattr(plan, field, value)
        plan.version += 1
        await self.session.commit()

        logger.info("Plan updated", plan_id=plan.id, version=plan.version, fields=sorted(changes))
        return plan

    async def deactivate(self, plan_id: str) -> BillingPlanTable:
        plan = await self.get(plan_id)
        if plan.is_active:
            plan.is_active = False
            plan.version += 1
            await self.session.commit()
            logger.info("Plan deactivated", plan_id=plan.id, slug=plan.slug)
        return plan

    async def seed_defaults(
        self, plans: list[dict[str, Any]] | None = None, currency: str = "INR"
    ) -> list[BillingPlanTable]:
        """Insert or refresh the default plan tiers, keyed by slug."""
        seeded: list[BillingPlanTable] = []
        for definition in plans or DEFAULT_PLANS:
            values = {"currency": currency, **definition}
            result = await self.session.execute(
                select(BillingPlanTable).where(BillingPlanTable.slug == values["slug"])
            )
            plan = result.scalar_one_or_none()
            if plan is None:
                plan = BillingPlanTable(is_active=True, version=1, **values)
                self.session.add(plan)
                logger.info("Seeding plan", slug=values["slug"])
            elif _differs(plan, values):
                for field, value in values.items():
                    setattr(plan, field, value)
                plan.version += 1
                logger.info("Refreshing seeded plan", slug=plan.slug, version=plan.version)
            seeded.append(plan)

        await self.session.commit()
        return seeded


def _differs(plan: BillingPlanTable, values: dict[str, Any]) -> bool:
    for field, value in values.items():
        current = getattr(plan, field)
        if isinstance(value, Decimal) and current is not None:
            if Decimal(current) != value:
                return True
        elif current != value:
            return True
    return False


__all__ = ["PlanCatalog"]
