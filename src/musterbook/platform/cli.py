#!/usr/bin/env python
"""
CLI management commands for Musterbook billing.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol

import click

from musterbook.platform.billing.catalog import PlanCatalog
from musterbook.platform.billing.config import get_billing_config
from musterbook.platform.billing.gateway import PaymentGateway, RazorpayGateway
from musterbook.platform.billing.payments import PaymentProcessor
from musterbook.platform.billing.reconciliation import PaymentReconciler
from musterbook.platform.billing.subscriptions import SubscriptionService
from musterbook.platform.db import create_all_tables, get_async_db
from musterbook.platform.logging import setup_logging


class AsyncSessionManager(Protocol):
    async def __aenter__(self) -> Any: ...  # pragma: no cover - protocol definition
    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> Any: ...  # pragma: no cover


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], AsyncSessionManager]
    init_db: Callable[[], Awaitable[None]]
    gateway_factory: Callable[[], PaymentGateway]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        session_factory=get_async_db,
        init_db=create_all_tables,
        gateway_factory=lambda: RazorpayGateway(get_billing_config().gateway),
    )


@click.group()
def cli() -> None:
    """Musterbook billing CLI."""
    setup_logging()


@cli.command()
def init_database() -> None:
    """Create the billing tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    asyncio.run(deps.init_db())
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--currency", default=None, help="Currency for the seeded plans")
def seed_plans(currency: str | None) -> None:
    """Insert or refresh the Starter, Professional and Enterprise plans."""
    deps = _get_cli_dependencies()
    currency = currency or get_billing_config().lifecycle.default_currency

    async def _seed() -> list[tuple[str, int]]:
        async with deps.session_factory() as session:
            plans = await PlanCatalog(session).seed_defaults(currency=currency)
            return [(plan.slug, plan.version) for plan in plans]

    for slug, version in asyncio.run(_seed()):
        click.echo(f"  {slug} (version {version})")
    click.echo("Plans seeded successfully!")


@cli.command()
@click.option(
    "--older-than-hours",
    type=int,
    default=None,
    help="Expire unresolved orders older than this many hours",
)
def reconcile_payments(older_than_hours: int | None) -> None:
    """Mark stale checkout orders as failed."""
    deps = _get_cli_dependencies()
    hours = older_than_hours or get_billing_config().lifecycle.stale_order_hours

    async def _reconcile() -> tuple[int, int, int]:
        gateway = deps.gateway_factory()
        try:
            async with deps.session_factory() as session:
                processor = PaymentProcessor(session, gateway, SubscriptionService(session))
                report = await PaymentReconciler(processor).expire_stale_orders(
                    timedelta(hours=hours)
                )
                return report.examined, len(report.expired), len(report.skipped)
        finally:
            close = getattr(gateway, "close", None)
            if close is not None:
                await close()

    examined, expired, skipped = asyncio.run(_reconcile())
    click.echo(f"Examined {examined} orders: {expired} expired, {skipped} skipped")


if __name__ == "__main__":
    cli()
