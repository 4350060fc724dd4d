"""structlog setup for the escalation service.

Log lines carry keyword context (``shift_id``, ``key``, ``round``...).
While a work item executes, its shift id and key are bound through
contextvars so every line logged inside the step carries them.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog

SERVICE_NAME = "shift-escalation"

# Event keys that hold phone numbers
PHONE_FIELDS = frozenset({"to", "from_number", "phone"})


def mask_phone(phone: str | None) -> str:
    """Mask a phone number down to its last four digits."""
    if not phone:
        return ""
    return f"***{phone[-4:]}"


def _mask_phone_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in PHONE_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and not value.startswith("***"):
            event_dict[key] = mask_phone(value)
    return event_dict


def _service_fields(instance_id: str | None) -> structlog.types.Processor:
    def add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", SERVICE_NAME)
        if instance_id:
            event_dict.setdefault("instance_id", instance_id)
        return event_dict

    return add_service


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    instance_id: str | None = None,
) -> None:
    """Configure structlog once at startup.

    Args:
        level: Minimum level name, e.g. "INFO"
        json_output: JSON lines for production, colored console otherwise
        instance_id: Added to every entry when several workers run
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_fields(instance_id),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _mask_phone_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_context(**values: Any) -> AbstractContextManager[Any]:
    """Bind values to every log line emitted inside the ``with`` block."""
    return structlog.contextvars.bound_contextvars(**values)
