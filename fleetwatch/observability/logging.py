"""
structlog setup shared by the CLI, the API and the monitoring workers.

Production renders one JSON object per line; development uses the colored
console renderer. Core modules log through ``logging.getLogger(__name__)``
and are bridged to stdout at the configured level, so both styles end up in
the same stream. Entity workers bind ``entity_id`` into the context of their
task, which tags every line they emit.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from fleetwatch.config.settings import get_settings

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "uvicorn.access")


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib bridge.

    Args:
        level: Overrides ``LOG_LEVEL`` (e.g. ``"DEBUG"`` for ``--debug``).

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Snapshot processed", entity_id="drv_17", alerts=2)
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.is_production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind fields into every subsequent log line of the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)
