import logging
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from accrual_engine.core.cron_logger import CronLogger
from accrual_engine.schemas.job_queue_schema import NotificationPayload, NotificationStatusEnum
from accrual_engine.services.job_queue_service import JobQueueService
from accrual_engine.workers.process_job_queue import run_process_job_queue

from fakes import FakeQueueRepository, FakeSmsGateway


def make_service(gateway=None, batch_size=50, max_attempts=3):
    repository = FakeQueueRepository()
    service = JobQueueService(repository, gateway or FakeSmsGateway(), batch_size=batch_size,
                              max_attempts=max_attempts)
    return service, repository


@pytest.mark.asyncio
async def test_enqueue_validates_payload():
    service, repository = make_service()

    job_id = await service.enqueue({"recipient": "9876543210", "message": "Hello"})
    assert repository.rows[job_id].payload["message_type"] == "general"

    with pytest.raises(ValidationError):
        await service.enqueue({"message": "no recipient"})


@pytest.mark.asyncio
async def test_enqueue_many():
    service, repository = make_service()
    payloads = [NotificationPayload(recipient=f"98765432{i:02d}", message="Assigned", loan_id=i) for i in range(3)]

    assert await service.enqueue_many(payloads) == 3
    assert await service.enqueue_many([]) == 0
    assert len(repository.rows) == 3


@pytest.mark.asyncio
async def test_batch_marks_sent_and_failed():
    gateway = FakeSmsGateway(failing_recipients={"2"})
    service, repository = make_service(gateway)
    ok = repository.add({"recipient": "1", "message": "a"})
    bad = repository.add({"recipient": "2", "message": "b"})

    result = await service.process_notification_batch()

    assert (result.processed, result.failed) == (1, 1)
    assert repository.rows[ok].status == NotificationStatusEnum.sent
    # First failure goes back to pending for a retry
    assert repository.rows[bad].status == NotificationStatusEnum.pending
    assert repository.rows[bad].error_message == "gateway rejected message"


@pytest.mark.asyncio
async def test_retry_ceiling_makes_failure_terminal():
    service, repository = make_service(FakeSmsGateway(failing_recipients={"2"}), max_attempts=2)
    job_id = repository.add({"recipient": "2", "message": "b"}, max_attempts=2)

    await service.process_notification_batch()
    assert repository.rows[job_id].status == NotificationStatusEnum.pending

    await service.process_notification_batch()
    assert repository.rows[job_id].status == NotificationStatusEnum.failed
    assert repository.rows[job_id].attempts == 2

    result = await service.process_notification_batch()
    assert (result.processed, result.failed) == (0, 0)


@pytest.mark.asyncio
async def test_invalid_payload_fails_immediately():
    service, repository = make_service()
    job_id = repository.add({"message": "missing recipient"})

    result = await service.process_notification_batch()

    assert result.failed == 1
    assert repository.rows[job_id].status == NotificationStatusEnum.failed
    assert repository.rows[job_id].error_message.startswith("Invalid payload")


@pytest.mark.asyncio
async def test_batch_size_bounds_each_run():
    service, repository = make_service(batch_size=2)
    for i in range(5):
        repository.add({"recipient": str(i), "message": "x"})

    result = await service.process_notification_batch()

    assert result.processed == 2
    pending = [row for row in repository.rows.values() if row.status == NotificationStatusEnum.pending]
    assert len(pending) == 3


@pytest.mark.asyncio
async def test_idle_queue_run_logs_nothing(caplog):
    caplog.set_level(logging.DEBUG, logger="accrual_engine.cron")
    service, _ = make_service()

    result = await run_process_job_queue(service, logger=CronLogger())

    assert (result.processed, result.failed) == (0, 0)
    assert [r for r in caplog.records if r.name == "accrual_engine.cron"] == []


@pytest.mark.asyncio
async def test_queue_run_logs_counts_when_active(caplog):
    caplog.set_level(logging.INFO, logger="accrual_engine.cron")
    service, repository = make_service()
    repository.add({"recipient": "1", "message": "a"})

    await run_process_job_queue(service, logger=CronLogger())

    (record,) = [r for r in caplog.records if r.name == "accrual_engine.cron"]
    assert record.extra == {"processed": 1, "failed": 0}


class SteppingClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.mark.asyncio
async def test_delivered_message_is_not_resent_when_marking_sent_fails():
    gateway = FakeSmsGateway()
    repository = FakeQueueRepository(failing_writes={"mark_sent": 1})
    clock = SteppingClock(datetime(2025, 1, 1, 10, 0))
    service = JobQueueService(repository, gateway, stale_after=timedelta(minutes=10), clock=clock)
    job_id = repository.add({"recipient": "9876543210", "message": "Assigned"})

    first = await service.process_notification_batch()
    assert first.processed == 1
    assert repository.rows[job_id].status == NotificationStatusEnum.processing

    clock.advance(minutes=30)
    second = await service.process_notification_batch()

    assert (second.processed, second.failed) == (0, 0)
    assert gateway.sent == ["9876543210"]
    assert repository.rows[job_id].status == NotificationStatusEnum.sent


@pytest.mark.asyncio
async def test_failed_status_write_does_not_abort_the_batch():
    repository = FakeQueueRepository(failing_writes={"mark_failed": 1})
    clock = SteppingClock(datetime(2025, 1, 1, 10, 0))
    service = JobQueueService(repository, FakeSmsGateway(failing_recipients={"1"}), clock=clock)
    for recipient in ("1", "2", "3"):
        repository.add({"recipient": recipient, "message": "x"})

    result = await service.process_notification_batch()

    assert (result.processed, result.failed) == (2, 1)
    assert repository.statuses() == ["processing", "sent", "sent"]

    # Once stale, the unrecorded failure is released and retried
    clock.advance(minutes=11)
    await service.process_notification_batch()

    row = repository.rows["job-1"]
    assert row.attempts == 2
    assert row.status == NotificationStatusEnum.pending


@pytest.mark.asyncio
async def test_rows_abandoned_in_processing_are_released():
    gateway = FakeSmsGateway()
    repository = FakeQueueRepository()
    clock = SteppingClock(datetime(2025, 1, 1, 10, 0))
    service = JobQueueService(repository, gateway, stale_after=timedelta(minutes=10), clock=clock)
    retryable = repository.add({"recipient": "1", "message": "x"}, max_attempts=3)
    exhausted = repository.add({"recipient": "2", "message": "y"}, max_attempts=1)

    # A worker claimed both rows and died before sending
    await repository.claim_pending("sms_notification", 50, clock())

    clock.advance(minutes=5)
    result = await service.process_notification_batch()
    assert (result.processed, result.failed) == (0, 0)

    clock.advance(minutes=6)
    result = await service.process_notification_batch()

    assert result.processed == 1
    assert gateway.sent == ["1"]
    assert repository.rows[retryable].status == NotificationStatusEnum.sent
    assert repository.rows[exhausted].status == NotificationStatusEnum.failed
