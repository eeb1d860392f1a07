"""
Structured logging for the KPI chat service.

Every module logs through ``get_logger(__name__)``; records go to stdout as
``time | level | logger | message`` at the configured ``log_level``.
"""
from __future__ import annotations

import logging
import sys

from kpichat.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# httpx logs one INFO line per classifier request; faker is noisy while seeding
_QUIET_LOGGERS = ("httpx", "httpcore", "faker")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        logger.addHandler(handler)
        # no duplicate lines via the root logger
        logger.propagate = False
        for noisy in _QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logger.setLevel(_level(settings.log_level))
    return logger
