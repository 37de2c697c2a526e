"""Default plan tiers installed by ``musterbook-billing seed-plans``."""

from decimal import Decimal
from typing import Any

from musterbook.platform.billing.enums import UNLIMITED_EMPLOYEES

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "slug": "starter",
        "name": "Starter",
        "description": "For small teams getting started with HR",
        "monthly_price": Decimal("499"),
        "yearly_price": Decimal("4990"),
        "max_employees": 25,
        "trial_days": 14,
        "sort_order": 1,
        "features": [
            "Up to 25 employees",
            "Employee directory",
            "Leave management",
            "Attendance tracking",
            "Email support",
        ],
    },
    {
        "slug": "professional",
        "name": "Professional",
        "description": "For growing companies that run payroll in-house",
        "monthly_price": Decimal("1499"),
        "yearly_price": Decimal("14990"),
        "max_employees": 200,
        "trial_days": 14,
        "sort_order": 2,
        "features": [
            "Up to 200 employees",
            "Everything in Starter",
            "Payroll processing",
            "Advanced analytics",
            "Custom integrations",
            "Priority support",
        ],
        "has_payroll": True,
        "has_advanced_analytics": True,
        "has_custom_integrations": True,
        "has_priority_support": True,
    },
    {
        "slug": "enterprise",
        "name": "Enterprise",
        "description": "Unlimited employees with dedicated support. Contact sales.",
        "monthly_price": Decimal("0"),
        "yearly_price": Decimal("0"),
        "max_employees": UNLIMITED_EMPLOYEES,
        "trial_days": 30,
        "sort_order": 3,
        "is_custom": True,
        "features": [
            "Unlimited employees",
            "Everything in Professional",
            "Dedicated account manager",
            "Custom workflows",
            "SLA guarantee",
            "On-premise deployment option",
        ],
        "has_payroll": True,
        "has_advanced_analytics": True,
        "has_custom_integrations": True,
        "has_priority_support": True,
        "has_dedicated_manager": True,
        "has_custom_workflows": True,
        "has_sla": True,
        "has_on_premise": True,
    },
]
