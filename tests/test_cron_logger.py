import json
import logging

from accrual_engine.core.cron_logger import CronLogger
from accrual_engine.core.logging_config import JsonFormatter


def test_error_metadata_includes_exception_details(caplog):
    caplog.set_level(logging.INFO, logger="accrual_engine.cron")
    logger = CronLogger()

    try:
        raise ValueError("bad principal")
    except ValueError as e:
        logger.error("Error calculating loan #3", e, {"loan_id": 3})

    (record,) = caplog.records
    assert record.levelno == logging.ERROR
    assert record.extra["loan_id"] == 3
    assert record.extra["error"] == "bad principal"
    assert record.extra["type"] == "ValueError"
    assert "Traceback" in record.extra["stack"]


def test_dead_letter_uses_its_own_logger(caplog):
    caplog.set_level(logging.WARNING, logger="accrual_engine.dead_letter")

    CronLogger().dead_letter(9, "late_fee_tiers is not valid JSON", "{oops")

    (record,) = caplog.records
    assert record.name == "accrual_engine.dead_letter"
    assert record.extra == {"loan_id": 9, "reason": "late_fee_tiers is not valid JSON", "raw": "'{oops'"}


def test_logging_failures_never_raise(monkeypatch, capsys):
    logger = CronLogger()

    def explode(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(logger._logger, "log", explode)

    logger.info("still fine", {"a": 1})
    logger.error("still fine", RuntimeError("x"))

    assert "Failed to write log: disk full" in capsys.readouterr().err


def test_json_formatter_includes_metadata():
    record = logging.LogRecord("accrual_engine.cron", logging.INFO, __file__, 1, "Task completed", None, None)
    record.extra = {"duration": "12ms", "runCount": 3}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "accrual_engine.cron"
    assert payload["message"] == "Task completed"
    assert payload["data"] == {"duration": "12ms", "runCount": 3}
    assert "timestamp" in payload
