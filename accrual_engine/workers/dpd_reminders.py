"""
DPD reminder job.

Runs once a day and queues an SMS for every accruing loan whose days past
due match a reminder rule: a few days before the due date, on the due date,
and daily while overdue. Messages go through the job queue, so delivery and
retries are the queue worker's concern. A loan gets at most one message per
rule per day, even if the job is run again by hand.
"""

import time
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from accrual_engine.core import settings
from accrual_engine.core.cron_logger import CronLogger, cron_logger
from accrual_engine.core.exceptions import LoanDataError
from accrual_engine.schemas.accrual_schema import JobRunSummary
from accrual_engine.schemas.job_queue_schema import NotificationPayload, ReminderRule
from accrual_engine.services.accrual_calculator import round2
from accrual_engine.services.loan_decoder import decode_decimal, decode_due_dates
from accrual_engine.services.status_evaluator import days_past_due

DEFAULT_REMINDER_RULES = [
    ReminderRule(
        template_key="due_reminder",
        dpd_values=[-3, -1],
        message="Your loan {application_number} of Rs {amount} is due on {due_date}. Please pay on time to avoid late fees.",
    ),
    ReminderRule(
        template_key="due_today",
        dpd_values=[0],
        message="Your loan {application_number} of Rs {amount} is due today ({due_date}). Please pay today to avoid late fees.",
    ),
    ReminderRule(
        template_key="overdue_reminder",
        dpd_min=1,
        dpd_max=30,
        message="Your loan {application_number} is overdue by {days_passed} day(s). Outstanding: Rs {amount}. Please pay immediately.",
    ),
]


class _TemplateValues(dict):
    def __missing__(self, key):
        return ""


def render_message(template: str, values: Dict[str, Any]) -> str:
    """Fill ``{placeholders}``; unknown ones become empty."""
    return template.format_map(_TemplateValues(values))


def _outstanding(loan) -> Decimal:
    loan_id = loan.loan_id
    principal = decode_decimal(loan_id, "processed_amount", loan.processed_amount)
    interest = decode_decimal(loan_id, "processed_interest", loan.processed_interest, Decimal("0"))
    penalty = decode_decimal(loan_id, "processed_penalty", loan.processed_penalty, Decimal("0"))
    return round2(principal + interest + penalty)


def _start_of_day_utc(today: date, tz: ZoneInfo) -> datetime:
    # Queue rows carry naive UTC timestamps
    local_midnight = datetime.combine(today, datetime.min.time(), tzinfo=tz)
    return local_midnight.astimezone(dt_timezone.utc).replace(tzinfo=None)


async def send_dpd_reminders(
    repository,
    queue_service,
    today: Optional[date] = None,
    timezone: Optional[str] = None,
    rules: Optional[Sequence[ReminderRule]] = None,
    logger: CronLogger = cron_logger,
) -> JobRunSummary:
    tz = ZoneInfo(timezone or settings.SCHEDULER_TIMEZONE)
    today = today or datetime.now(tz).date()
    rules = DEFAULT_REMINDER_RULES if rules is None else rules
    start = time.monotonic()

    logger.info("Starting DPD reminder job", {"date": today.isoformat()})

    try:
        loans = await repository.fetch_reminder_candidates()
        already_queued = await queue_service.queued_since(_start_of_day_utc(today, tz))
    except Exception as error:
        logger.error(f"DPD reminder job failed: {error}", error)
        raise

    sent_today = {(p.get("message_type"), p.get("loan_id")) for p in already_queued}
    summary = JobRunSummary(total=len(loans))
    payloads: List[NotificationPayload] = []

    for loan in loans:
        loan_id = loan.loan_id
        try:
            due_dates = decode_due_dates(loan_id, loan.processed_due_date, tz)
            amount = _outstanding(loan)
        except LoanDataError as e:
            logger.error(f"Rejected loan #{loan_id}: {e.reason}", data={"loan_id": loan_id})
            logger.dead_letter(loan_id, e.reason, e.raw)
            summary.errors += 1
            continue

        dpd = days_past_due(due_dates, today)
        rule = next((r for r in rules if dpd is not None and r.matches(dpd)), None)
        if rule is None or (rule.template_key, loan_id) in sent_today:
            summary.skipped += 1
            continue

        message = render_message(rule.message, {
            "application_number": loan.application_number or f"#{loan_id}",
            "loan_id": loan_id,
            "amount": f"{amount:.2f}",
            "due_date": min(due_dates).strftime("%d-%m-%Y"),
            "days_passed": max(dpd, 0),
        })
        payloads.append(NotificationPayload(
            recipient=loan.borrower_phone,
            message=message,
            message_type=rule.template_key,
            loan_id=loan_id,
        ))
        summary.success += 1

    if payloads:
        await queue_service.enqueue_many(payloads)

    summary.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"DPD reminder job completed: {summary.success} queued, {summary.skipped} skipped, "
        f"{summary.errors} errors, {summary.duration_ms}ms"
    )
    return summary
