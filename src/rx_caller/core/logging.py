"""Structured logging configuration using structlog.

structlog events and plain ``logging`` records from uvicorn, SQLAlchemy and
httpx go through one stdout handler, so every line shares the same
timestamp, level and renderer.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Libraries that log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")

_static_fields: dict[str, Any] = {}


def _add_static_fields(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in _static_fields.items():
        event_dict.setdefault(key, value)
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    environment: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the console format
        environment: Added to every entry when set
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    _static_fields.clear()
    if environment:
        _static_fields["environment"] = environment

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_static_fields,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        renderer: list[Any] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)
