"""Logging setup for the relay server and command line entry points."""

from __future__ import annotations

import logging

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
    """Install a single stream handler on the ``agilevibe`` logger."""
    logger = logging.getLogger("agilevibe")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
    logger.propagate = False
