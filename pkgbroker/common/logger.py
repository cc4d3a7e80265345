"""Logging setup for pkgbroker processes.

The API server and the Celery workers call ``setup_logger`` once at start-up.
Modules log through ``logging.getLogger(__name__)`` and inherit the handlers
configured here.
"""

import logging
import logging.handlers
import os
from typing import Optional


def setup_logger(
    name: str = "pkgbroker",
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the ``pkgbroker`` logger hierarchy.

    Args:
        name: Logger name to configure (children inherit its handlers)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating log file
        log_format: Custom log format string
        date_format: Custom date format string (ISO 8601 by default)
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level name is unknown
    """
    logger = logging.getLogger(name)

    level_upper = level.upper()
    if not isinstance(logging.getLevelName(level_upper), int):
        raise ValueError(
            f"Invalid log level: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    logger.setLevel(level_upper)

    # Prevent duplicate handlers on reload
    if logger.handlers:
        return logger

    if log_format is None:
        log_format = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
    if date_format is None:
        date_format = "%Y-%m-%dT%H:%M:%S"

    formatter = logging.Formatter(log_format, datefmt=date_format)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger