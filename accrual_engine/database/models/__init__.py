from accrual_engine.database.models.loan_model import LoanRecord
from accrual_engine.database.models.job_queue_model import QueuedNotification

__all__ = ["LoanRecord", "QueuedNotification"]
