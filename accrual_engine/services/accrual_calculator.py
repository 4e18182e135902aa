"""
Interest and penalty accrual for a single loan.

Interest is incremental: each run adds interest for the days since the last
calculation. Penalty is recomputed from scratch on every run from the number
of days the worst installment is overdue, and replaces the stored value, so
re-running never double counts.
"""

from datetime import date, datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence, Tuple

from accrual_engine.schemas.accrual_schema import (
    AccrualResult,
    BoundedTier,
    LateFeeTier,
    LoanAccrualState,
    OneTimeTier,
    UnboundedTier,
)

CENT = Decimal("0.01")
DEFAULT_GST_PERCENT = Decimal("18")


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_calendar_date(value, tz: Optional[tzinfo] = None) -> date:
    """Truncate a datetime to its calendar date in ``tz``.

    Naive datetimes are UTC, which is how MongoDB stores them.
    """
    if isinstance(value, datetime):
        if tz is not None:
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(tz)
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def inclusive_day_count(start: date, end: date) -> int:
    """Days from ``start`` to ``end`` counting both ends (same day -> 1)."""
    return (end - start).days + 1


def max_days_overdue(due_dates: Iterable[date], today: date) -> int:
    """Days the worst installment is overdue; today itself is not a full overdue day."""
    worst = 0
    for due_date in due_dates:
        if today > due_date:
            days_overdue = max(inclusive_day_count(due_date, today) - 1, 1)
            worst = max(worst, days_overdue)
    return worst


def calculate_interest(principal: Decimal, daily_rate: Decimal, days: int) -> Decimal:
    return round2(principal * daily_rate * days)


def calculate_penalty(
    principal: Decimal,
    days_overdue: int,
    tiers: Sequence[LateFeeTier],
    default_gst_percent: Decimal = DEFAULT_GST_PERCENT,
) -> Tuple[Decimal, Decimal, Decimal]:
    """Return ``(penalty_base, gst, penalty_total)`` for the given overdue days."""
    zero = Decimal("0.00")
    if days_overdue <= 0 or not tiers:
        return zero, zero, zero

    ordered = sorted(tiers, key=lambda tier: tier.start_day)
    total = Decimal("0")
    for tier in ordered:
        if tier.start_day > days_overdue:
            continue
        unit = tier.unit_amount(principal)
        if isinstance(tier, OneTimeTier):
            total += unit
        elif isinstance(tier, UnboundedTier):
            total += unit * (days_overdue - tier.start_day + 1)
        elif isinstance(tier, BoundedTier):
            days_in_tier = max(min(tier.end_day, days_overdue) - tier.start_day + 1, 0)
            total += unit * days_in_tier

    gst_percent = ordered[0].gst_percent
    if gst_percent is None:
        gst_percent = default_gst_percent

    penalty_base = round2(total)
    gst = round2(penalty_base * gst_percent / Decimal(100))
    return penalty_base, gst, round2(penalty_base + gst)


def accrue(
    state: LoanAccrualState,
    today: date,
    default_gst_percent: Decimal = DEFAULT_GST_PERCENT,
    not_after: Optional[date] = None,
) -> Optional[AccrualResult]:
    """Compute the loan's new interest and penalty as of ``today``.

    Returns None when the loan was already calculated today (or later), which
    makes repeated calls within one calendar day no-ops.

    Raises ValueError for a non-positive principal; callers treat that as a
    record-level data error. Raises ValueError as well when ``today`` is
    after ``not_after``, the current calendar date.
    """
    if not_after is not None and today > not_after:
        raise ValueError(f"Cannot accrue for {today.isoformat()}, which is after {not_after.isoformat()}")

    if state.last_calculated_date is not None and state.last_calculated_date >= today:
        return None

    if state.principal <= 0:
        raise ValueError(f"Non-positive principal {state.principal}")

    start = state.last_calculated_date or state.processed_date
    days = inclusive_day_count(start, today)
    if days <= 0:
        # Disbursed in the future relative to today; nothing to accrue yet
        return None

    interest_for_period = calculate_interest(state.principal, state.daily_interest_rate, days)
    accrued_interest = round2(state.accrued_interest + interest_for_period)

    overdue_days = max_days_overdue(state.due_dates, today)
    penalty_base, gst, penalty_total = calculate_penalty(
        state.principal, overdue_days, state.late_fee_tiers, default_gst_percent
    )

    return AccrualResult(
        loan_id=state.loan_id,
        calculated_date=today,
        days=days,
        interest_for_period=interest_for_period,
        accrued_interest=accrued_interest,
        max_days_overdue=overdue_days,
        penalty_base=penalty_base,
        penalty_gst=gst,
        accrued_penalty=penalty_total,
    )
