"""Logging for the relay and its HTTP surface.

Records go to a rotating JSON file, where the ``extra`` fields passed through
``log_with_context`` (session_id, endpoint, event_type, ...) become keys, and
to a plain console stream.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

LOG_FILE_NAME = "music_dashboard.log"

# Per-request and per-frame chatter from these drowns out the relay's own events
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "websockets")


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Install the JSON file handler and the console handler on the root logger.

    Args:
        log_level: Level for the root logger and the console
        log_dir: Directory for the JSON log file (defaults to <project>/logs)
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept

    Returns:
        The root logger
    """
    level = getattr(logging, log_level.upper())
    if log_dir is None:
        log_dir = Path(__file__).parent.parent / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # The file keeps debug records (coalescing, throttling, cache discards) regardless of level
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s", timestamp=True)
    )
    file_handler.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%H:%M:%S"))
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **extra_fields: Any) -> None:
    """Log ``message`` with ``extra_fields`` attached as structured keys.

    Pass ``event_type`` so records can be filtered by what happened
    (``session_created``, ``request_throttled``, ...).
    """
    getattr(logger, level.lower())(message, extra=extra_fields)
