import time

from accrual_engine.core.cron_logger import CronLogger, cron_logger
from accrual_engine.schemas.job_queue_schema import QueueRunResult


# Drains one batch of queued SMS so request handlers never block on bulk sends
async def run_process_job_queue(queue_service, logger: CronLogger = cron_logger) -> QueueRunResult:
    start = time.monotonic()
    try:
        result = await queue_service.process_notification_batch()
    except Exception as error:
        logger.error(f"Job queue: {error}", error)
        raise

    if result.processed > 0 or result.failed > 0:
        logger.info(
            f"Job queue: {queue_service.job_type} batch done in {int((time.monotonic() - start) * 1000)}ms",
            {"processed": result.processed, "failed": result.failed},
        )
    return result
