"""
Logging configuration for dpmm-clustering.

Every module obtains its logger through ``get_logger(__name__)`` so that all
output lives under the ``dpmm_clustering`` namespace and can be configured in
one place.

Usage:
    from dpmm_clustering.utils.logging_config import get_logger, setup_logging

    setup_logging("DEBUG")
    logger = get_logger(__name__)
"""

import logging
import sys
from typing import Optional

_ROOT_LOGGER_NAME = "dpmm_clustering"
_DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger nested under the package namespace.

    Args:
        name: Usually ``__name__`` of the calling module

    Returns:
        logging.Logger
    """
    if name != _ROOT_LOGGER_NAME and not name.startswith(_ROOT_LOGGER_NAME + "."):
        name = f"{_ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(
    level: Optional[str] = None,
    fmt: str = _DEFAULT_FORMAT,
    stream=None,
) -> logging.Logger:
    """
    Attach a single stream handler to the package logger.

    Calling this more than once replaces the previous handler instead of
    stacking duplicates (useful in notebooks and tests).

    Args:
        level: Log level name; defaults to ``config.log_level``
        fmt: Format string for records
        stream: Target stream (default: stderr)

    Returns:
        The configured package logger
    """
    if level is None:
        from ..config import config

        level = config.log_level

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt, _DEFAULT_DATEFMT))
    logger.addHandler(handler)
    return logger
