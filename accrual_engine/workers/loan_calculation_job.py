"""
Loan calculation job.

Runs every few hours. For every disbursed loan that was not calculated today
it adds interest since the last calculation, recomputes the penalty from
scratch and stamps the calculation date. Loans already calculated today are
skipped, so extra runs in a day cost only the candidate query.
"""

import time
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from accrual_engine.core import settings
from accrual_engine.core.cron_logger import CronLogger, cron_logger
from accrual_engine.core.exceptions import LoanDataError
from accrual_engine.schemas.accrual_schema import JobRunSummary
from accrual_engine.services.accrual_calculator import accrue
from accrual_engine.services.loan_decoder import decode_loan


async def calculate_loan_interest_and_penalty(
    repository,
    today: Optional[date] = None,
    timezone: Optional[str] = None,
    logger: CronLogger = cron_logger,
) -> JobRunSummary:
    tz = ZoneInfo(timezone or settings.SCHEDULER_TIMEZONE)
    current_date = datetime.now(tz).date()
    today = today or current_date
    if today > current_date:
        logger.error(f"Refusing to calculate loans for future date {today.isoformat()}")
        raise ValueError(f"Calculation date {today.isoformat()} is after today ({current_date.isoformat()})")
    default_rate = Decimal(settings.DEFAULT_DAILY_INTEREST_RATE)
    default_gst = Decimal(settings.DEFAULT_GST_PERCENT)

    logger.info("Starting loan calculation job...", {"date": today.isoformat()})
    start = time.monotonic()

    try:
        loans = await repository.fetch_accrual_candidates(today)
    except Exception as error:
        logger.error("Fatal error in loan calculation job", error)
        raise

    logger.info(f"Found {len(loans)} processed loans to calculate")
    summary = JobRunSummary(total=len(loans))

    for loan in loans:
        loan_id = getattr(loan, "loan_id", None)

        try:
            state = decode_loan(loan, tz, default_rate)
            result = accrue(state, today, default_gst, not_after=current_date)
        except LoanDataError as e:
            logger.error(f"Rejected loan #{loan_id}: {e.reason}", data={"loan_id": loan_id})
            logger.dead_letter(loan_id, e.reason, e.raw)
            summary.errors += 1
            continue
        except (ValueError, ArithmeticError) as e:
            logger.error(f"Error calculating loan #{loan_id}", e, {"loan_id": loan_id})
            logger.dead_letter(loan_id, str(e))
            summary.errors += 1
            continue

        if result is None:
            logger.debug(f"Skipping loan #{loan_id} - already calculated for {today.isoformat()}")
            summary.skipped += 1
            continue

        try:
            await repository.save_accrual(loan, result)
        except Exception as e:
            logger.error(f"Error saving calculation for loan #{loan_id}", e, {"loan_id": loan_id})
            summary.errors += 1
            continue

        summary.success += 1
        if summary.success % 10 == 0:
            logger.debug(f"Processed {summary.success} loans...")

    summary.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("Loan calculation job completed", summary.model_dump())
    return summary
