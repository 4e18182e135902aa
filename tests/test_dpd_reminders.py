import logging
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from accrual_engine.core.cron_logger import CronLogger
from accrual_engine.schemas.job_queue_schema import ReminderRule
from accrual_engine.services.job_queue_service import JobQueueService
from accrual_engine.workers.dpd_reminders import render_message, send_dpd_reminders

from fakes import FakeLoanRepository, FakeQueueRepository, FakeSmsGateway

TZ = "Asia/Kolkata"


def make_queue(created_at=datetime(2025, 2, 5, 4, 30)):
    repository = FakeQueueRepository(created_at=created_at)
    return JobQueueService(repository, FakeSmsGateway()), repository


def reminder_row(loan_row_factory, loan_id=1, **overrides):
    fields = dict(application_number=f"LN-{loan_id}", borrower_phone=f"98765432{loan_id:02d}",
                  processed_interest=35.0)
    fields.update(overrides)
    return loan_row_factory(loan_id, **fields)


def queued(queue_repository):
    return [row.payload for row in queue_repository.rows.values()]


@pytest.mark.asyncio
@pytest.mark.parametrize("today,message_type", [
    (date(2025, 1, 28), "due_reminder"),
    (date(2025, 1, 30), "due_reminder"),
    (date(2025, 1, 31), "due_today"),
    (date(2025, 2, 5), "overdue_reminder"),
])
async def test_rule_is_picked_by_days_past_due(loan_row_factory, today, message_type):
    queue_service, queue_repository = make_queue()
    repository = FakeLoanRepository([reminder_row(loan_row_factory)])

    summary = await send_dpd_reminders(repository, queue_service, today=today, timezone=TZ)

    assert summary.success == 1
    (payload,) = queued(queue_repository)
    assert payload["message_type"] == message_type
    assert payload["loan_id"] == 1
    assert payload["recipient"] == "9876543201"


@pytest.mark.asyncio
async def test_overdue_message_is_filled_from_the_loan(loan_row_factory):
    queue_service, queue_repository = make_queue()
    repository = FakeLoanRepository([reminder_row(loan_row_factory, processed_penalty=1000.0)])

    await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ)

    (payload,) = queued(queue_repository)
    assert payload["message"] == (
        "Your loan LN-1 is overdue by 5 day(s). Outstanding: Rs 11035.00. Please pay immediately."
    )


@pytest.mark.asyncio
async def test_loans_outside_every_rule_or_without_phone_are_left_alone(loan_row_factory):
    queue_service, queue_repository = make_queue()
    repository = FakeLoanRepository([
        reminder_row(loan_row_factory, 1),
        reminder_row(loan_row_factory, 2, borrower_phone=None),
        reminder_row(loan_row_factory, 3, processed_due_date="2025-02-20"),
    ])

    summary = await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ)

    assert (summary.total, summary.success, summary.skipped) == (2, 1, 1)
    assert [p["loan_id"] for p in queued(queue_repository)] == [1]


@pytest.mark.asyncio
async def test_second_run_on_the_same_day_queues_nothing(loan_row_factory):
    queue_service, queue_repository = make_queue()
    repository = FakeLoanRepository([reminder_row(loan_row_factory)])

    await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ)
    summary = await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ)

    assert (summary.success, summary.skipped) == (0, 1)
    assert len(queue_repository.rows) == 1


@pytest.mark.asyncio
async def test_reminder_from_a_previous_day_does_not_block_today(loan_row_factory):
    queue_service, queue_repository = make_queue()
    queue_repository.add({"recipient": "9876543201", "message": "x", "message_type": "overdue_reminder",
                          "loan_id": 1}, created_at=datetime(2025, 2, 4, 4, 30))
    repository = FakeLoanRepository([reminder_row(loan_row_factory)])

    summary = await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ)

    assert summary.success == 1
    assert len(queue_repository.rows) == 2


@pytest.mark.asyncio
async def test_bad_row_goes_to_dead_letter_and_batch_continues(loan_row_factory, caplog):
    caplog.set_level(logging.WARNING, logger="accrual_engine.dead_letter")
    queue_service, queue_repository = make_queue()
    repository = FakeLoanRepository([
        reminder_row(loan_row_factory, 1, processed_due_date="soon"),
        reminder_row(loan_row_factory, 2),
    ])

    summary = await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ,
                                       logger=CronLogger())

    assert (summary.errors, summary.success) == (1, 1)
    assert [p["loan_id"] for p in queued(queue_repository)] == [2]
    (record,) = [r for r in caplog.records if r.name == "accrual_engine.dead_letter"]
    assert record.extra["loan_id"] == 1


@pytest.mark.asyncio
async def test_fetch_failure_propagates(loan_row_factory):
    queue_service, _ = make_queue()

    with pytest.raises(RuntimeError):
        await send_dpd_reminders(FakeLoanRepository([], fail_fetch=True), queue_service,
                                 today=date(2025, 2, 5), timezone=TZ)


@pytest.mark.asyncio
async def test_custom_rules(loan_row_factory):
    queue_service, queue_repository = make_queue()
    rules = [ReminderRule(template_key="final_notice", dpd_min=5, dpd_max=5, message="Final notice for {loan_id}")]
    repository = FakeLoanRepository([reminder_row(loan_row_factory)])

    await send_dpd_reminders(repository, queue_service, today=date(2025, 2, 5), timezone=TZ, rules=rules)

    (payload,) = queued(queue_repository)
    assert (payload["message_type"], payload["message"]) == ("final_notice", "Final notice for 1")


def test_unknown_placeholders_render_empty():
    assert render_message("Hi {name}, pay {amount}", {"amount": "10.00"}) == "Hi , pay 10.00"


@pytest.mark.parametrize("fields", [
    {"dpd_min": 1},
    {"dpd_min": 5, "dpd_max": 1},
])
def test_reminder_rule_needs_a_valid_range(fields):
    with pytest.raises(ValidationError):
        ReminderRule(template_key="x", message="y", **fields)
