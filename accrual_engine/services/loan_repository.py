import logging
from datetime import date, datetime, time
from typing import List, Optional
from zoneinfo import ZoneInfo

from beanie.exceptions import RevisionIdWasChanged

from accrual_engine.core import settings
from accrual_engine.core.exceptions import ConcurrentModificationError
from accrual_engine.database.models.loan_model import LoanRecord
from accrual_engine.schemas.accrual_schema import ACCRUING_STATUSES, AccrualResult, LoanStatusEnum

logger = logging.getLogger(__name__)

WRITE_POLICY_OPTIMISTIC = "optimistic"
WRITE_POLICY_LAST_WRITE_WINS = "last_write_wins"


class LoanRepository:
    """Reads candidate loans for the batch jobs and commits their results."""

    def __init__(self, write_policy: str = WRITE_POLICY_OPTIMISTIC, timezone: Optional[str] = None):
        if write_policy not in (WRITE_POLICY_OPTIMISTIC, WRITE_POLICY_LAST_WRITE_WINS):
            raise ValueError(f"Unknown loan write policy: {write_policy}")
        self.write_policy = write_policy
        # Calendar dates are stored as midnight in this zone
        self.tz = ZoneInfo(timezone or settings.SCHEDULER_TIMEZONE)

    def _midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    async def fetch_accrual_candidates(self, today: date) -> List[LoanRecord]:
        """Disbursed loans still accruing that were not calculated today, ascending loan id."""
        start_of_today = self._midnight(today)
        query = {
            "processed_at": {"$ne": None},
            "status": {"$in": [status.value for status in ACCRUING_STATUSES]},
            "$or": [
                {"last_calculated_at": None},
                {"last_calculated_at": {"$lt": start_of_today}},
            ],
        }
        return await LoanRecord.find(query).sort("+loan_id").to_list()

    async def fetch_overdue_candidates(self) -> List[LoanRecord]:
        query = {
            "status": LoanStatusEnum.current.value,
            "processed_due_date": {"$ne": None},
        }
        return await LoanRecord.find(query).sort("+loan_id").to_list()

    async def fetch_reminder_candidates(self) -> List[LoanRecord]:
        """Disbursed, accruing loans with a borrower phone on file."""
        query = {
            "processed_at": {"$ne": None},
            "status": {"$in": [status.value for status in ACCRUING_STATUSES]},
            "processed_due_date": {"$ne": None},
            "borrower_phone": {"$ne": None},
        }
        return await LoanRecord.find(query).sort("+loan_id").to_list()

    async def _commit(self, record: LoanRecord):
        record.updated_at = datetime.utcnow()
        try:
            await record.replace(ignore_revision=self.write_policy == WRITE_POLICY_LAST_WRITE_WINS)
        except RevisionIdWasChanged as e:
            logger.warning(f"Loan #{record.loan_id} changed since it was read; write discarded")
            raise ConcurrentModificationError(record.loan_id) from e

    async def save_accrual(self, record: LoanRecord, result: AccrualResult):
        record.processed_interest = float(result.accrued_interest)
        record.processed_penalty = float(result.accrued_penalty)
        record.last_calculated_at = self._midnight(result.calculated_date)
        await self._commit(record)

    async def mark_overdue(self, record: LoanRecord) -> bool:
        """Move a loan from current to overdue. Returns False if it already left current."""
        if record.status != LoanStatusEnum.current.value:
            return False
        record.status = LoanStatusEnum.overdue.value
        await self._commit(record)
        return True


loan_repository = LoanRepository(settings.LOAN_WRITE_POLICY, settings.SCHEDULER_TIMEZONE)
