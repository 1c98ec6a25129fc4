from __future__ import annotations

import logging
import sys

import structlog

from .config import LoggingSettings


_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def level_for(settings: LoggingSettings | None = None, override: str | None = None) -> int:
    """Numeric level from ``--log-level``, else ``logging.log_level`` (``verbose_output`` forces DEBUG)."""
    if override:
        return _LEVELS.get(override.strip().upper(), logging.INFO)
    if settings is None:
        return logging.INFO
    if settings.verbose_output:
        return logging.DEBUG
    return _LEVELS.get(settings.log_level, logging.INFO)


def configure_logging(level: int = logging.INFO) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
