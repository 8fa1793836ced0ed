"""
Provides support for logging
"""

import logging
import time
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s"


def configure_logging(
    level: int = logging.WARNING,
    handlers: list[logging.Handler] | None = None,
):
    """
    Configures logging format and log level.

    :param level: default = logging.WARNING
    :param handlers: root handlers - if None, then logging is configured to log to stderr

    - log format: %(asctime)s [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s
    - the thread name is logged because ticks, acceptances and observer callbacks run on different threads
    - timestamps are UTC

    >>> configure_logging(level=logging.DEBUG)
    >>> logger = logging.getLogger('AuctionManager')
    >>> logger.info('auction started: o1') # doctest: +SKIP
    2023-01-09 14:48:20,594 [INFO] [MainThread] [AuctionManager] auction started: o1
    """
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        format=LOG_FORMAT,
        level=level,
        handlers=handlers,
        force=True,
    )
    logging.captureWarnings(True)


def log_level(name: str) -> int:
    """
    Maps a config log level name, e.g. "debug", to its logging level.

    :raises ValueError: if the name is not a standard logging level name
    """
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"invalid log level: {name}")
    return level


def get_logger(obj: Any, name: str | None = None) -> logging.Logger:
    """
    Returns a logger using the class name as the logger name.
    If `name` is specifed, then it is appended to the class name: `{self.__class__.__name__}.{name}`
    """
    logger = logging.getLogger(obj.__class__.__name__)
    if name is None:
        return logger

    return logger.getChild(name)
