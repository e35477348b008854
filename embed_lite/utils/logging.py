"""Structured logging setup with structlog.

Call ``configure_logging`` once at startup; modules acquire loggers with
``structlog.get_logger("embed_lite.<module>")`` and log key/value context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    **context: Any,
) -> None:
    """Configure structured logging.

    Args:
        log_level: ``DEBUG``, ``INFO``, ``WARNING`` or ``ERROR`` (case-insensitive)
        log_format: ``json`` for machines, ``console`` for humans
        **context: Key/value pairs bound to every log line
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if context:
        structlog.contextvars.bind_contextvars(**context)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
