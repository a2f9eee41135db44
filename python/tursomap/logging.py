"""Structured logging setup.

tursomap modules log through structlog and never configure it on import.
Applications that want the library's events rendered call
:func:`configure_logging` once at startup; :func:`tursomap.create_database`
does so from ``TURSOMAP_LOG_*`` settings when it loads them itself.

Example:
    >>> from tursomap.logging import configure_logging
    >>> configure_logging(level="DEBUG", json_format=False)
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(getattr(logging, level.upper()))

