from datetime import date, timedelta

import pytest

from accrual_engine.schemas.accrual_schema import LoanStatusEnum
from accrual_engine.services.status_evaluator import days_past_due, evaluate_overdue

DUE = date(2025, 1, 31)


@pytest.mark.parametrize("dpd, expected", [(0, False), (5, False), (6, True), (30, True)])
def test_transition_boundary(dpd, expected):
    decision = evaluate_overdue(1, LoanStatusEnum.current, [DUE], DUE + timedelta(days=dpd))
    assert decision.dpd == dpd
    assert decision.transition is expected
    assert decision.new_status == (LoanStatusEnum.overdue if expected else None)


def test_already_overdue_loan_is_left_alone():
    decision = evaluate_overdue(1, LoanStatusEnum.overdue, [DUE], DUE + timedelta(days=10))
    assert decision.transition is False


def test_closed_loans_never_transition():
    for status in (LoanStatusEnum.cleared, LoanStatusEnum.cancelled, LoanStatusEnum.rejected):
        assert evaluate_overdue(1, status, [DUE], DUE + timedelta(days=10)).transition is False


def test_no_due_dates_means_no_decision():
    decision = evaluate_overdue(1, LoanStatusEnum.current, [], date(2025, 3, 1))
    assert decision.dpd is None
    assert decision.transition is False


def test_earliest_due_date_drives_dpd():
    today = date(2025, 2, 10)
    assert days_past_due([date(2025, 2, 28), DUE], today) == 10


def test_custom_threshold():
    decision = evaluate_overdue(1, LoanStatusEnum.current, [DUE], DUE + timedelta(days=3), threshold=2)
    assert decision.transition is True
