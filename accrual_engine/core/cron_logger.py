"""
Structured logger used by the scheduler and the batch jobs.

Every call accepts a message plus optional metadata (or an exception) and
never raises: a failure while logging is reported on stderr and dropped so
that it can never abort a batch.
"""

import logging
import sys
import traceback
from typing import Any, Dict, Optional

from accrual_engine.core.logging_config import DEAD_LETTER_LOGGER


def _error_data(error: Optional[BaseException]) -> Optional[Dict[str, Any]]:
    if error is None:
        return None
    return {
        "error": str(error),
        "type": type(error).__name__,
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    }


class CronLogger:
    """Thin structured wrapper around a stdlib logger."""

    def __init__(self, name: str = "accrual_engine.cron"):
        self._logger = logging.getLogger(name)
        self._dead_letter = logging.getLogger(DEAD_LETTER_LOGGER)

    def _write(self, logger: logging.Logger, level: int, message: str, data: Optional[Dict[str, Any]] = None):
        try:
            if data:
                logger.log(level, message, extra={"extra": dict(data)})
            else:
                logger.log(level, message)
        except Exception as e:
            try:
                sys.stderr.write(f"[CRON LOGGER ERROR] Failed to write log: {e}\n")
            except Exception:
                pass

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._write(self._logger, logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._write(self._logger, logging.INFO, message, data)

    def warn(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._write(self._logger, logging.WARNING, message, data)

    def error(self, message: str, error: Optional[BaseException] = None, data: Optional[Dict[str, Any]] = None):
        payload = dict(data or {})
        details = _error_data(error)
        if details:
            payload.update(details)
        self._write(self._logger, logging.ERROR, message, payload)

    def dead_letter(self, loan_id: Any, reason: str, raw: Any = None):
        """Record a rejected loan row so it can be fixed by hand."""
        self._write(self._dead_letter, logging.WARNING, f"Rejected loan #{loan_id}: {reason}",
                    {"loan_id": loan_id, "reason": reason, "raw": repr(raw)})

    def task_start(self, task_name: str, schedule: str, quiet: bool = False):
        log = self.debug if quiet else self.info
        log(f'Task started: "{task_name}"', {"schedule": schedule})

    def task_complete(self, task_name: str, duration_ms: int, stats: Optional[Dict[str, Any]] = None,
                      quiet: bool = False):
        log = self.debug if quiet else self.info
        log(f'Task completed: "{task_name}"', {"duration": f"{duration_ms}ms", **(stats or {})})

    def task_error(self, task_name: str, error: BaseException, duration_ms: Optional[int] = None):
        self.error(f'Task failed: "{task_name}"', error,
                   {"task": task_name, "duration": f"{duration_ms}ms" if duration_ms is not None else None})


cron_logger = CronLogger()
