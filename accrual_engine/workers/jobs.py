"""
Registers every scheduled job with the scheduler.

Called once by the host process at startup. Registering twice fails with
TaskAlreadyRegisteredError rather than silently scheduling a job twice.
"""

from accrual_engine.core import settings
from accrual_engine.core.cron_logger import cron_logger
from accrual_engine.services.scheduler import SchedulerRegistry
from accrual_engine.workers.dpd_reminders import send_dpd_reminders
from accrual_engine.workers.loan_calculation_job import calculate_loan_interest_and_penalty
from accrual_engine.workers.process_job_queue import run_process_job_queue
from accrual_engine.workers.update_overdue_loans import update_overdue_loans

LOAN_CALCULATION_TASK = "loan-calculation"
UPDATE_OVERDUE_TASK = "update-overdue-loans"
PROCESS_JOB_QUEUE_TASK = "process-job-queue"
DPD_REMINDER_TASK = "dpd-reminders"


def register_jobs(scheduler: SchedulerRegistry, loan_repository, assignment_service, queue_service):
    cron_logger.info("Registering scheduled jobs...")
    timezone = settings.SCHEDULER_TIMEZONE

    async def loan_calculation():
        await calculate_loan_interest_and_penalty(loan_repository, timezone=timezone)

    async def overdue_update():
        await update_overdue_loans(loan_repository, assignment_service, timezone=timezone)

    async def job_queue():
        await run_process_job_queue(queue_service)

    async def dpd_reminders():
        await send_dpd_reminders(loan_repository, queue_service, timezone=timezone)

    # Loans already calculated today are skipped, so the 4-hourly cadence is cheap
    scheduler.every_hours(settings.LOAN_CALCULATION_INTERVAL_HOURS, LOAN_CALCULATION_TASK, loan_calculation,
                          timezone=timezone, run_on_init=False)

    scheduler.daily(settings.OVERDUE_JOB_TIME, UPDATE_OVERDUE_TASK, overdue_update,
                    timezone=timezone, run_on_init=False)

    scheduler.every_minutes(settings.JOB_QUEUE_INTERVAL_MINUTES, PROCESS_JOB_QUEUE_TASK, job_queue,
                            timezone=timezone, run_on_init=False, quiet=True)

    scheduler.daily(settings.DPD_REMINDER_TIME, DPD_REMINDER_TASK, dpd_reminders,
                    timezone=timezone, run_on_init=False, enabled=settings.DPD_REMINDER_ENABLED)

    cron_logger.info(f"Registered {len(scheduler.tasks)} scheduled job(s)")
