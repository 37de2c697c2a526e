"""
Collaborators the billing subsystem consumes but does not own.

Seat counting comes from the employee directory, notifications go to the
in-app notification service and audit records go to the audit log. Billing
only depends on the protocols below; the defaults are enough to run the
service standalone.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from musterbook.platform.logging import log_audit_event

logger = structlog.get_logger(__name__)


class SeatDirectory(Protocol):
    """Counts active employees for a tenant."""

    async def count_active_seats(self, tenant_id: str) -> int: ...  # pragma: no cover


class NotificationSender(Protocol):
    """Delivers an in-app notification to a user."""

    async def notify(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        link: str | None = None,
    ) -> None: ...  # pragma: no cover


class AuditRecorder(Protocol):
    """Writes an audit log entry."""

    async def record(
        self,
        actor_user_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str,
        description: str,
        tenant_id: str | None = None,
    ) -> None: ...  # pragma: no cover


@dataclass
class InMemorySeatDirectory:
    """Seat counts held in memory, keyed by tenant."""

    seats: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def set_seats(self, tenant_id: str, count: int) -> None:
        self.seats[tenant_id] = count

    async def count_active_seats(self, tenant_id: str) -> int:
        return self.seats.get(tenant_id, 0)


class LoggingNotificationSender:
    """Notification sender that only logs the notification."""

    async def notify(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        link: str | None = None,
    ) -> None:
        logger.info(
            "Billing notification",
            user_id=user_id,
            kind=kind,
            title=title,
            notification_message=message,
            link=link,
        )


class StructlogAuditRecorder:
    """Audit recorder backed by the structured audit logger."""

    async def record(
        self,
        actor_user_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str,
        description: str,
        tenant_id: str | None = None,
    ) -> None:
        log_audit_event(
            action,
            entity_type,
            entity_id,
            description,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
        )


async def notify_safely(
    sender: NotificationSender,
    user_id: str | None,
    kind: str,
    title: str,
    message: str,
    link: str | None = None,
) -> None:
    """Send a notification; failures are logged and never propagate."""
    if not user_id:
        return
    try:
        await sender.notify(user_id, kind, title, message, link)
    except Exception as e:
        logger.warning("Notification delivery failed", user_id=user_id, kind=kind, error=str(e))


async def audit_safely(
    recorder: AuditRecorder,
    actor_user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str,
    description: str,
    tenant_id: str | None = None,
) -> None:
    """Record an audit entry; failures are logged and never propagate."""
    try:
        await recorder.record(
            actor_user_id, action, entity_type, entity_id, description, tenant_id=tenant_id
        )
    except Exception as e:
        logger.warning(
            "Audit record failed", action=action, entity_id=entity_id, error=str(e)
        )


__all__ = [
    "SeatDirectory",
    "NotificationSender",
    "AuditRecorder",
    "InMemorySeatDirectory",
    "LoggingNotificationSender",
    "StructlogAuditRecorder",
    "notify_safely",
    "audit_safely",
]
