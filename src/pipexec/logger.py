from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from pipexec.settings import LoggingSettings

LOGGER_NAME = "pipexec"

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def level_from_name(name: str) -> int:
    try:
        return _LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name!r}") from None


def configure_logging(settings: Optional["LoggingSettings"] = None) -> None:
    """Apply LoggingSettings to the stdlib loggers structlog writes through."""
    if settings is None:
        return
    logging.getLogger(LOGGER_NAME).setLevel(level_from_name(settings.default_level.value))
    for name, level in settings.enabled_loggers.items():
        logging.getLogger(name).setLevel(level_from_name(level.value))


structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.dev.ConsoleRenderer(),
    ],
)

logger: structlog.BoundLogger = structlog.get_logger(LOGGER_NAME)
