"""
Overdue status job.

Runs daily and moves loans from ``current`` to ``overdue`` once DPD exceeds
the threshold (DPD >= 6 with the default threshold of 5). Each transition asks
the admin service for a recovery officer; a failed assignment is logged and
leaves the status change in place.
"""

import time
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from accrual_engine.core import settings
from accrual_engine.core.cron_logger import CronLogger, cron_logger
from accrual_engine.core.exceptions import LoanDataError
from accrual_engine.schemas.accrual_schema import JobRunSummary
from accrual_engine.services.loan_decoder import decode_due_dates, decode_status
from accrual_engine.services.status_evaluator import evaluate_overdue


async def update_overdue_loans(
    repository,
    assignment_service,
    today: Optional[date] = None,
    timezone: Optional[str] = None,
    threshold: Optional[int] = None,
    logger: CronLogger = cron_logger,
) -> JobRunSummary:
    tz = ZoneInfo(timezone or settings.SCHEDULER_TIMEZONE)
    today = today or datetime.now(tz).date()
    threshold = settings.OVERDUE_DPD_THRESHOLD if threshold is None else threshold
    start = time.monotonic()

    logger.info("Starting overdue loans update job")

    try:
        loans = await repository.fetch_overdue_candidates()
    except Exception as error:
        logger.error(f"Overdue loans update job failed: {error}", error)
        raise

    summary = JobRunSummary(total=len(loans))

    for loan in loans:
        loan_id = loan.loan_id
        try:
            due_dates = decode_due_dates(loan_id, loan.processed_due_date, tz)
            status = decode_status(loan_id, loan.status)
        except LoanDataError as e:
            logger.error(f"Rejected loan #{loan_id}: {e.reason}", data={"loan_id": loan_id})
            logger.dead_letter(loan_id, e.reason, e.raw)
            summary.errors += 1
            continue

        decision = evaluate_overdue(loan_id, status, due_dates, today, threshold)
        if not decision.transition:
            summary.skipped += 1
            continue

        try:
            changed = await repository.mark_overdue(loan)
        except Exception as e:
            logger.error(f"Error updating loan #{loan_id} to overdue: {e}", e, {"loan_id": loan_id})
            summary.errors += 1
            continue

        if not changed:
            summary.skipped += 1
            continue

        summary.success += 1
        logger.info(
            f"Updated loan #{loan_id} ({getattr(loan, 'application_number', None)}) "
            f"to overdue status (DPD: {decision.dpd})"
        )

        try:
            await assignment_service.assign_recovery_officer(loan_id)
        except Exception as e:
            logger.error(f"Assign recovery officer for overdue loan #{loan_id} failed", e, {"loan_id": loan_id})

    summary.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"Overdue loans update job completed: {summary.success} updated, "
        f"{summary.errors} errors, {summary.duration_ms}ms"
    )
    return summary
