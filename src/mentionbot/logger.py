"""Structured logging for the bot.

``logger`` works from import time, configured from ``LOG_LEVEL`` so that
config errors raised while Settings load are still reported. Once the
``[logging]`` section is known, :func:`configure_logging` applies it;
``LOG_LEVEL`` in the environment keeps precedence over the config file.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LEVEL = "INFO"

# whatsmeow logs every websocket frame at INFO; its database logger is capitalised
_WHATSMEOW_LOGGERS = ("whatsmeow", "Whatsmeow")


def resolve_level(configured: str | None = None) -> int:
    """Numeric level from ``LOG_LEVEL``, else *configured*, else INFO.

    Unknown names fall back to INFO rather than failing startup.
    """
    name = os.environ.get(LEVEL_ENV) or configured or DEFAULT_LEVEL
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str | None = None) -> int:
    """(Re)configure stdlib and structlog for *level*. Returns the level applied."""
    numeric = resolve_level(level)

    # structlog's filter_by_level reads the stdlib root level
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(numeric)
    library_level = numeric if numeric <= logging.DEBUG else max(numeric, logging.WARNING)
    for name in _WHATSMEOW_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return numeric


configure_logging()
logger: structlog.stdlib.BoundLogger = structlog.get_logger("mentionbot")


def _log_uncaught(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Unhandled exception, exiting", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _log_uncaught
