"""
Structured logging for the billing service.

structlog renders every event with the service name and environment attached.
Billing audit records go through a dedicated ``audit`` logger so they can be
routed to the audit store separately from operational logs.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from musterbook.platform.settings import settings

AUDIT_LOGGER_NAME = "audit"


def _add_service_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.environment.value)
    return event_dict


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Args:
        level: Overrides ``observability.log_level``
        log_format: ``json`` or ``console``; overrides ``observability.log_format``
    """
    level = level or settings.observability.log_level.value
    log_format = log_format or settings.observability.log_format

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Correlation ids are bound per request by the billing middleware
    if settings.observability.enable_correlation_ids:
        processors.insert(0, structlog.contextvars.merge_contextvars)

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Cached loggers would bypass structlog.testing.capture_logs
        cache_logger_on_first_use=not settings.is_testing,
    )


def log_audit_event(
    action: str,
    entity_type: str,
    entity_id: str,
    description: str,
    actor_user_id: str | None = None,
    tenant_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Write one audit record.

    ``action`` is the audit verb (CREATE, UPDATE, CANCEL, PAYMENT) and the
    entity fields identify the record it applies to.
    """
    structlog.get_logger(AUDIT_LOGGER_NAME).info(
        description,
        audit_action=action,
        audit_category="billing",
        audit_entity_type=entity_type,
        audit_entity_id=entity_id,
        audit_user_id=actor_user_id,
        audit_tenant_id=tenant_id,
        **kwargs,
    )


__all__ = ["setup_logging", "log_audit_event", "AUDIT_LOGGER_NAME"]
