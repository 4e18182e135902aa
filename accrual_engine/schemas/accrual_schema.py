from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class LoanStatusEnum(str, Enum):
    current = "current"
    overdue = "overdue"
    cleared = "cleared"
    cancelled = "cancelled"
    rejected = "rejected"


# Loans in these statuses keep accruing interest and penalty
ACCRUING_STATUSES = (LoanStatusEnum.current, LoanStatusEnum.overdue)


class FeeKindEnum(str, Enum):
    percent = "percent"
    fixed = "fixed"


class _TierBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_day: int = Field(..., ge=1, description="First overdue day the tier applies to")
    fee_value: Decimal = Field(..., ge=0, description="Percent of principal or fixed amount, per day for multi-day tiers")
    fee_kind: FeeKindEnum = Field(default=FeeKindEnum.percent)
    gst_percent: Optional[Decimal] = Field(None, ge=0, description="GST applied on the penalty base")

    def unit_amount(self, principal: Decimal) -> Decimal:
        if self.fee_kind == FeeKindEnum.fixed:
            return self.fee_value
        return principal * self.fee_value / Decimal(100)


class OneTimeTier(_TierBase):
    """Flat fee applied once when ``start_day`` is reached."""
    kind: Literal["one_time"] = "one_time"

    @property
    def end_day(self) -> int:
        return self.start_day


class BoundedTier(_TierBase):
    kind: Literal["bounded"] = "bounded"
    end_day: int = Field(..., ge=1)


class UnboundedTier(_TierBase):
    """Applies to every day from ``start_day`` onwards ("day N+")."""
    kind: Literal["unbounded"] = "unbounded"

    @property
    def end_day(self) -> None:
        return None


LateFeeTier = Annotated[Union[OneTimeTier, BoundedTier, UnboundedTier], Field(discriminator="kind")]


class LoanAccrualState(BaseModel):
    """Typed view of one active loan, decoded from its stored row."""
    model_config = ConfigDict(frozen=True)

    loan_id: int
    principal: Decimal
    daily_interest_rate: Decimal
    due_dates: Tuple[date, ...] = ()
    late_fee_tiers: Tuple[LateFeeTier, ...] = ()
    accrued_interest: Decimal = Decimal("0")
    accrued_penalty: Decimal = Decimal("0")
    last_calculated_date: Optional[date] = None
    processed_date: date
    status: LoanStatusEnum


class AccrualResult(BaseModel):
    loan_id: int
    calculated_date: date
    days: int = Field(..., description="Inclusive day count the interest step covered")
    interest_for_period: Decimal
    accrued_interest: Decimal
    max_days_overdue: int
    penalty_base: Decimal
    penalty_gst: Decimal
    accrued_penalty: Decimal


class StatusDecision(BaseModel):
    loan_id: int
    dpd: Optional[int] = None
    transition: bool = False
    new_status: Optional[LoanStatusEnum] = None


class JobRunSummary(BaseModel):
    total: int = 0
    success: int = 0
    errors: int = 0
    skipped: int = 0
    duration_ms: int = 0
