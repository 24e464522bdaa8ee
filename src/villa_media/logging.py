"""Centralised logging configuration with JSON output."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from .config import get_settings

_configured = False


def _resolve_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def _configure_structlog(level: int) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """Initialise stdlib + structlog JSON logging.

    Runs once per process unless ``force`` is set. The level defaults to
    ``Settings.log_level`` (``VILLA_MEDIA_LOG_LEVEL``).
    """

    global _configured
    if _configured and not force:
        return
    numeric_level = _resolve_level(level or get_settings().log_level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    _configure_structlog(numeric_level)
    _configured = True


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a bound structured logger."""

    configure_logging()
    logger = structlog.get_logger(name)
    if initial_values:
        return logger.bind(**initial_values)
    return logger


__all__ = ["configure_logging", "get_logger"]
