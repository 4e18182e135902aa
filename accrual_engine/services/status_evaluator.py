from datetime import date
from typing import Iterable, Optional

from accrual_engine.schemas.accrual_schema import LoanStatusEnum, StatusDecision

DEFAULT_DPD_THRESHOLD = 5


def days_past_due(due_dates: Iterable[date], today: date) -> Optional[int]:
    """Calendar days since the earliest due date, or None without due dates."""
    due_dates = list(due_dates)
    if not due_dates:
        return None
    return (today - min(due_dates)).days


# Decides whether a current loan has crossed the overdue threshold
def evaluate_overdue(
    loan_id: int,
    status: LoanStatusEnum,
    due_dates: Iterable[date],
    today: date,
    threshold: int = DEFAULT_DPD_THRESHOLD,
) -> StatusDecision:
    dpd = days_past_due(due_dates, today)
    decision = StatusDecision(loan_id=loan_id, dpd=dpd)
    if dpd is None or status != LoanStatusEnum.current:
        return decision
    if dpd > threshold:
        decision.transition = True
        decision.new_status = LoanStatusEnum.overdue
    return decision
