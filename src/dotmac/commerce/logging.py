"""
structlog configuration for the commerce engine.

Modules log with ``structlog.get_logger(__name__)``; this module only wires
the processor chain from settings and provides the audit event helper.
"""

import logging

import structlog

from dotmac.commerce.settings import settings

AUDIT_LOGGER_NAME = "audit"


def _build_processors() -> list:
    observability = settings.observability

    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if observability.enable_correlation_ids:
        processors.insert(
            0,
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.THREAD_NAME]
            ),
        )

    if observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging() -> None:
    """Configure stdlib logging and structlog from ``settings.observability``."""
    logging.basicConfig(format="%(message)s", level=settings.observability.log_level.value)

    structlog.configure(
        processors=_build_processors(),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_audit_event(
    action: str,
    category: str,
    customer_id: int | None = None,
    tenant_id: str | None = None,
    resource_type: str | None = None,
    resource_id: int | str | None = None,
    **kwargs,
) -> None:
    """
    Emit a checkout audit event on the ``audit`` logger.

    Order commits, payment cancellations and membership activations all go
    through here so they share the ``audit_*`` fields.
    """
    structlog.get_logger(AUDIT_LOGGER_NAME).info(
        action,
        audit_category=category,
        audit_customer_id=customer_id,
        audit_tenant_id=tenant_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )


setup_logging()
