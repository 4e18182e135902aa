"""Logging setup for the engine: console output plus JSON-lines log files."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Optional

DEAD_LETTER_LOGGER = "accrual_engine.dead_letter"


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Structured metadata attached by CronLogger
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_data["data"] = record.extra

        return json.dumps(log_data, default=str)


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=30, encoding="utf-8", delay=True)
    handler.suffix = "%Y%m%d"
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure the root logger.

    Parameters
    ----------
    level : str
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    log_dir : str, optional
        Directory for ``cron.log`` and ``dead_letter.log``. Files are rotated
        at midnight. When omitted only console logging is configured.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        root_logger.addHandler(_file_handler(os.path.join(log_dir, "cron.log"), log_level))

        dead_letter = logging.getLogger(DEAD_LETTER_LOGGER)
        for handler in dead_letter.handlers[:]:
            dead_letter.removeHandler(handler)
        dead_letter.addHandler(_file_handler(os.path.join(log_dir, "dead_letter.log"), logging.WARNING))

    logging.getLogger("accrual_engine").setLevel(log_level)

    # Reduce noise from external libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
