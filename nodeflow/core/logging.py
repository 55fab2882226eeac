"""Logging setup for the engine."""

from __future__ import annotations

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Safe to call more than once; later calls only adjust the level.
    """
    global _configured

    logger = logging.getLogger("nodeflow")
    logger.setLevel((level or settings.log_level).upper())

    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True

    return logger
