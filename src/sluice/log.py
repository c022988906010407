"""
Logging configuration for sluice.

Library modules only create module-level loggers with
logging.getLogger(__name__); applications (and the sluice CLI) call
setup_logging() once to attach handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from sluice.config import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def setup_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    logger_name: str = "sluice",
) -> logging.Logger:
    """
    Configure console and optional rotating file output for a logger.

    Existing handlers on the logger are removed first, so calling this more
    than once does not duplicate output.

    Args:
        log_level: Logging level name. If None, uses config.log_level
        log_file: Path to a log file. If None, uses config.log_file (which
            may also be None, meaning console only)
        logger_name: Logger to configure

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> from sluice.log import setup_logging
        >>> logger = setup_logging("DEBUG")
        >>> logger.debug("Connections will be logged")
    """
    if log_level is None:
        log_level = config.log_level
    if log_file is None:
        log_file = config.log_file

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(os.fspath(log_file))
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
