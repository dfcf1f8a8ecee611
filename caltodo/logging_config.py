"""Logging setup for caltodo.

All modules log through ``get_logger(__name__)``; ``setup_logging`` wires the
root logger once at startup:
- a rotating file under ~/.caltodo/logs
- level from the argument or CALTODO_LOG_LEVEL
- optional stderr mirror for development
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_DIR = Path.home() / ".caltodo" / "logs"
LOG_FILE = LOG_DIR / "caltodo.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

# Driver loggers that emit a record per statement at DEBUG
DRIVER_LOGGERS = ("aiosqlite",)


def _resolve_level(log_level: Optional[str]) -> str:
    name = (log_level or os.getenv("CALTODO_LOG_LEVEL") or "INFO").upper()
    if not isinstance(getattr(logging, name, None), int):
        return "INFO"
    return name


def setup_logging(
    log_level: Optional[str] = None,
    console: bool = False
) -> logging.Logger:
    """Configure the root logger for caltodo.

    Calling it again replaces the previous handlers, so repeated setup never
    duplicates output.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Falls back to
                  CALTODO_LOG_LEVEL, then INFO; unknown names mean INFO.
        console: Also write records to stderr.

    Returns:
        The configured root logger

    Example:
        >>> setup_logging(log_level="DEBUG", console=True)
    """
    level_name = _resolve_level(log_level)
    numeric_level = getattr(logging, level_name)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.INFO))

    logging.getLogger(__name__).info(
        f"Logging initialized: level={level_name}, file={LOG_FILE}, console={console}"
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a caltodo module (pass ``__name__``)."""
    return logging.getLogger(name)
