"""
Logging Configuration

Structured logging through structlog.

Package modules only ask for loggers; nothing is configured on import, so
the host application's logging setup is left alone. Applications that want
auditdb's rendering call ``setup_logging()`` once at startup:

    from auditdb.core.logging import setup_logging

    setup_logging()              # reads APP_ENV / LOG_LEVEL from settings
"""

import logging
import sys

import structlog
from structlog.typing import FilteringBoundLogger, Processor

from auditdb.config.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog rendering and level filtering.

    Args:
        settings: Source of APP_ENV and LOG_LEVEL (defaults to the cached settings)
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # SQLAlchemy's engine echo (sensitive data logging) goes through stdlib logging;
    # a no-op when the host already configured a root handler
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name, defaults to module name

    Returns:
        Lazily configured structlog logger
    """
    return structlog.get_logger(name)


# Default logger instance
logger = get_logger("auditdb")
