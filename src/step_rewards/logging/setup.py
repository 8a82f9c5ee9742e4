"""
Structured logging configuration
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

from step_rewards.config import Settings


def setup_logging(
    service_name: str,
    settings: Optional[Settings] = None,
) -> structlog.BoundLogger:
    """
    Configure structured logging for the rewards engine

    Context bound with ``user_context`` (user and device ids) is merged into
    every event logged while it is active, including events from the ledger,
    phase and storage modules.

    Args:
        service_name: Name of the service for log identification
        settings: Optional settings object (will create default if not provided)

    Returns:
        Configured logger instance
    """
    if settings is None:
        settings = Settings(service_name=service_name)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    def add_service_fields(logger, method_name, event_dict: EventDict) -> EventDict:
        event_dict["service"] = service_name
        event_dict["environment"] = settings.environment
        return event_dict

    processors.append(add_service_fields)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(service_name)


def user_context(user_id: str, device_id: Optional[str] = None):
    """Bind the user (and device) to every log event inside the block."""
    fields = {"user_id": user_id}
    if device_id is not None:
        fields["device_id"] = device_id
    return structlog.contextvars.bound_contextvars(**fields)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a logger instance

    Args:
        name: Optional logger name (defaults to caller's module)

    Returns:
        Logger instance
    """
    return structlog.get_logger(name)
