"""
Shared helpers.
"""
import logging

from app.core import config


_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

logging.basicConfig(level=config.LOG_LEVEL, format=_FORMAT)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger using the configured level."""
    logger = logging.getLogger(name)
    logger.setLevel(config.LOG_LEVEL)
    return logger
