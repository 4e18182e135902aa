"""
Database-backed queue for notification fan-out.

Request handlers enqueue SMS work (e.g. hundreds of "account manager assigned"
messages after a bulk reassignment) and return immediately; the queue worker
drains it in bounded batches. Rows are never deleted, only moved through
pending -> processing -> sent | failed.

A row that stays in processing past the stale cutoff (the worker died or its
status write failed) is released: back to pending while attempts remain,
otherwise to failed. A message that was delivered but could not be marked
sent is remembered by the worker and re-marked on the next batch; it is never
released for another send.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Sequence, Set, Tuple, Union

from beanie import PydanticObjectId
from pydantic import ValidationError

from accrual_engine.core import settings
from accrual_engine.database.models.job_queue_model import QueuedNotification
from accrual_engine.schemas.job_queue_schema import (
    JOB_TYPE_SMS_NOTIFICATION,
    ClaimedNotification,
    NotificationPayload,
    NotificationStatusEnum,
    QueueRunResult,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
STALE_ERROR_MESSAGE = "Stalled in processing after the last allowed attempt"


class NotificationQueueRepository:
    """Beanie access to the ``job_queue`` collection."""

    async def insert(self, job_type: str, payload: Dict[str, Any], max_attempts: int) -> str:
        job = QueuedNotification(job_type=job_type, payload=payload, max_attempts=max_attempts)
        await job.insert()
        return str(job.id)

    async def insert_many(self, job_type: str, payloads: List[Dict[str, Any]], max_attempts: int) -> int:
        jobs = [QueuedNotification(job_type=job_type, payload=p, max_attempts=max_attempts) for p in payloads]
        await QueuedNotification.insert_many(jobs)
        return len(jobs)

    async def claim_pending(self, job_type: str, limit: int, claimed_at: datetime) -> List[QueuedNotification]:
        """Take up to ``limit`` pending rows (oldest first), mark them processing and count the attempt."""
        rows = await QueuedNotification.find({
            "job_type": job_type,
            "status": NotificationStatusEnum.pending.value,
            "$expr": {"$lt": ["$attempts", "$max_attempts"]},
        }).sort("+created_at").limit(limit).to_list()
        if not rows:
            return []

        ids = [row.id for row in rows]
        await QueuedNotification.find({
            "_id": {"$in": ids},
            "status": NotificationStatusEnum.pending.value,
        }).update_many({
            "$set": {"status": NotificationStatusEnum.processing.value, "claimed_at": claimed_at},
            "$inc": {"attempts": 1},
        })
        for row in rows:
            row.status = NotificationStatusEnum.processing
            row.attempts += 1
            row.claimed_at = claimed_at
        return rows

    async def release_stale(self, job_type: str, cutoff: datetime,
                            exclude_ids: Sequence[str] = ()) -> Tuple[int, int]:
        """Release rows stuck in processing since before ``cutoff``.

        Returns ``(released_to_pending, failed)``.
        """
        stale = {
            "job_type": job_type,
            "status": NotificationStatusEnum.processing.value,
            "$or": [{"claimed_at": None}, {"claimed_at": {"$lt": cutoff}}],
        }
        if exclude_ids:
            stale["_id"] = {"$nin": [PydanticObjectId(job_id) for job_id in exclude_ids]}

        released = await QueuedNotification.find({
            **stale,
            "$expr": {"$lt": ["$attempts", "$max_attempts"]},
        }).update_many({"$set": {"status": NotificationStatusEnum.pending.value, "claimed_at": None}})

        failed = await QueuedNotification.find({
            **stale,
            "$expr": {"$gte": ["$attempts", "$max_attempts"]},
        }).update_many({"$set": {
            "status": NotificationStatusEnum.failed.value,
            "processed_at": datetime.utcnow(),
            "error_message": STALE_ERROR_MESSAGE,
        }})
        return released.modified_count, failed.modified_count

    async def queued_since(self, job_type: str, since: datetime) -> List[Dict[str, Any]]:
        """Payloads of every row of ``job_type`` created at or after ``since``."""
        rows = await QueuedNotification.find({
            "job_type": job_type,
            "created_at": {"$gte": since},
        }).to_list()
        return [row.payload for row in rows]

    async def _set(self, job_id: str, fields: Dict[str, Any]):
        await QueuedNotification.find_one({"_id": PydanticObjectId(job_id)}).update({"$set": fields})

    async def mark_sent(self, job_id: str):
        await self._set(job_id, {
            "status": NotificationStatusEnum.sent.value,
            "processed_at": datetime.utcnow(),
            "error_message": None,
        })

    async def mark_failed(self, job_id: str, error_message: str, terminal: bool):
        """Record a failed attempt; the row returns to pending unless the attempt ceiling was reached."""
        status = NotificationStatusEnum.failed if terminal else NotificationStatusEnum.pending
        await self._set(job_id, {
            "status": status.value,
            "processed_at": datetime.utcnow(),
            "error_message": (error_message or "")[:MAX_ERROR_LENGTH] or None,
        })


class JobQueueService:

    def __init__(self, repository, gateway, batch_size: int = 50, max_attempts: int = 3,
                 stale_after: timedelta = timedelta(minutes=10),
                 job_type: str = JOB_TYPE_SMS_NOTIFICATION,
                 clock: Callable[[], datetime] = datetime.utcnow):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.repository = repository
        self.gateway = gateway
        self.batch_size = max(1, batch_size)
        self.max_attempts = max_attempts
        self.stale_after = stale_after
        self.job_type = job_type
        self._clock = clock
        # Delivered jobs whose "sent" write failed
        self._unrecorded_sends: Set[str] = set()

    async def enqueue(self, payload: Union[NotificationPayload, Dict[str, Any]]) -> str:
        payload = NotificationPayload.model_validate(payload)
        return await self.repository.insert(self.job_type, payload.model_dump(), self.max_attempts)

    async def enqueue_many(self, payloads: Iterable[Union[NotificationPayload, Dict[str, Any]]]) -> int:
        validated = [NotificationPayload.model_validate(p).model_dump() for p in payloads]
        if not validated:
            return 0
        return await self.repository.insert_many(self.job_type, validated, self.max_attempts)

    async def queued_since(self, since: datetime) -> List[Dict[str, Any]]:
        return await self.repository.queued_since(self.job_type, since)

    async def process_notification_batch(self) -> QueueRunResult:
        """Deliver one batch of pending notifications."""
        now = self._clock()
        await self._retry_unrecorded_sends()

        released, expired = await self.repository.release_stale(
            self.job_type, now - self.stale_after, sorted(self._unrecorded_sends)
        )
        if released or expired:
            logger.warning(f"job_queue released {released} stalled job(s) to pending, "
                           f"{expired} failed after their last attempt")

        jobs = await self.repository.claim_pending(self.job_type, self.batch_size, now)
        result = QueueRunResult()

        for job in jobs:
            job_id = str(job.id)
            try:
                claimed = ClaimedNotification(
                    id=job_id,
                    payload=NotificationPayload.model_validate(job.payload),
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                )
            except ValidationError as e:
                logger.error(f"job_queue job {job_id} has an invalid payload: {e}")
                await self._record_failure(job_id, f"Invalid payload: {e}", terminal=True)
                result.failed += 1
                continue

            try:
                await self.gateway.send_sms(claimed.payload.recipient, claimed.payload.message)
            except Exception as e:
                terminal = claimed.attempts >= claimed.max_attempts
                logger.error(
                    f"job_queue {claimed.payload.message_type} job {job_id} error "
                    f"(attempt {claimed.attempts}/{claimed.max_attempts}): {e}"
                )
                await self._record_failure(job_id, str(e), terminal)
                result.failed += 1
                continue

            result.processed += 1
            try:
                await self.repository.mark_sent(job_id)
            except Exception as e:
                self._unrecorded_sends.add(job_id)
                logger.error(f"job_queue job {job_id} was delivered but could not be marked sent: {e}")

        return result

    async def _record_failure(self, job_id: str, error_message: str, terminal: bool):
        try:
            await self.repository.mark_failed(job_id, error_message, terminal=terminal)
        except Exception as e:
            # Row stays in processing until released as stale
            logger.error(f"job_queue job {job_id} failure could not be recorded: {e}")

    async def _retry_unrecorded_sends(self):
        for job_id in sorted(self._unrecorded_sends):
            try:
                await self.repository.mark_sent(job_id)
            except Exception as e:
                logger.warning(f"job_queue job {job_id} still not marked sent: {e}")
                continue
            self._unrecorded_sends.discard(job_id)


def build_job_queue_service(gateway) -> JobQueueService:
    return JobQueueService(
        NotificationQueueRepository(),
        gateway,
        batch_size=settings.JOB_QUEUE_BATCH_SIZE,
        max_attempts=settings.JOB_QUEUE_MAX_ATTEMPTS,
        stale_after=timedelta(minutes=settings.JOB_QUEUE_STALE_MINUTES),
    )
