"""
Logging setup for the bank reconciliation engine.

Library modules log through ``logging.getLogger(__name__)`` and never add
handlers themselves; the CLI (or an embedding service) calls
``setup_logging`` once to attach them to the ``bank_recon`` logger.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "bank_recon"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# File records also carry the source location
FILE_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    """Map a level name from the config file (any case) to its number; unknown names give INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Attach console and optional file handlers to the engine's package logger.

    Calling it again replaces the previous handlers, so a CLI command can
    reconfigure after loading its YAML settings.

    Args:
        level: Console level, as a number or a name such as "debug"
        log_file: Rotating log file receiving every record down to DEBUG
        log_format: Console format (``DEFAULT_LOG_FORMAT`` when omitted)
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept beside the active one

    Returns:
        The ``bank_recon`` logger
    """
    level = resolve_level(level)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``bank_recon`` namespace, for scripts outside the package."""
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
