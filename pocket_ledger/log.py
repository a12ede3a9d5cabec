"""
Structured Logging

Every module logs through structlog with a named event and key/value
context, e.g. `logger.info("transaction_added", transaction_id=...)`.

The processor chain is installed on import so that library use works
without setup. Applications call `configure_logging()` once at startup to
apply the level and renderer from settings.
"""

import logging
from typing import Optional

import structlog

from pocket_ledger.config.settings import AppSettings


def _processors(json_output: bool) -> list:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """
    Configure stdlib logging and structlog from application settings.

    Safe to call more than once; the last call wins.
    """
    level_name = settings.log_level if settings else "INFO"
    json_output = settings.log_json if settings else True

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name))
    logging.getLogger().setLevel(getattr(logging, level_name))

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Loggers are created at import time; keep them re-configurable.
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)


structlog.configure(
    processors=_processors(json_output=True),
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=False,
)
