"""
Logging Configuration

Every module logs to a child of the 'plasmapic' logger
(logging.getLogger(__name__)). Scripts call setup_logging() once to send
those records to stdout and, optionally, to a run log next to the results.
"""

import logging
import sys
from typing import Optional

LOGGER_NAME = "plasmapic"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def _attach(logger, handler, level, formatter):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route plasmapic log records to stdout and an optional run log.

    Calling it again reconfigures the logger: handlers installed by the
    earlier call are closed and removed first.

    Args:
        level: Threshold for the logger and its handlers
        log_file: Run log path; overwritten at every call

    Returns:
        The 'plasmapic' logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    _attach(logger, logging.StreamHandler(sys.stdout), level, formatter)
    if log_file:
        _attach(logger, logging.FileHandler(log_file, mode='w', encoding='utf-8'), level, formatter)

    logger.debug("Logging to stdout%s", f" and {log_file}" if log_file else "")
    return logger
