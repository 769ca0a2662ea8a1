"""
Structured logging setup.

Library modules only call ``structlog.get_logger()``; applications embedding
docrepo may call ``configure_logging`` once at startup.
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, json_output: bool = False) -> None:
    """
    Configure structlog processors and the stdlib root logger.

    Args:
        level: Log level name, defaults to the LOG_LEVEL setting
        json_output: Render events as JSON instead of console key/value pairs
    """
    if level is None:
        from .config import get_settings

        level = get_settings().LOG_LEVEL

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
