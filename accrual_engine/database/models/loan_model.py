from beanie import Document, Indexed
from pydantic import Field
from typing import Any, Optional
from datetime import datetime


class LoanRecord(Document):
    """Stored loan row. Due dates, plan snapshot and late fee tiers are kept as loose JSON
    and decoded by ``services.loan_decoder`` before any calculation."""

    loan_id: Indexed(int, unique=True) = Field(..., description="Sequential loan id, batches process loans in ascending order")
    application_number: Optional[str] = Field(None, description="Human readable application number")
    user_id: Optional[int] = Field(None, description="Borrower id")
    borrower_phone: Optional[str] = Field(None, description="Borrower mobile number for SMS reminders")
    status: str = Field(..., description="Loan status (current, overdue, cleared, cancelled, rejected)")

    processed_at: Optional[datetime] = Field(None, description="Disbursal timestamp")
    processed_amount: Optional[float] = Field(None, description="Disbursed principal")
    processed_due_date: Optional[Any] = Field(None, description="Due date, JSON array of EMI due dates, or JSON string")
    plan_snapshot: Optional[Any] = Field(None, description="Loan plan captured at disbursal (JSON object or string)")
    late_fee_tiers: Optional[Any] = Field(None, description="Late fee tier schedule (JSON array or string)")

    processed_interest: float = Field(default=0.0, description="Accrued interest")
    processed_penalty: float = Field(default=0.0, description="Accrued penalty including GST")
    last_calculated_at: Optional[datetime] = Field(None, description="Calendar date (midnight) accrual has been applied through")

    assigned_recovery_officer_id: Optional[int] = Field(None, description="Recovery officer assigned once overdue")
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "loan_applications"
        # Revision id is the optimistic concurrency token for engine writes
        use_revision = True

    class Config:
        populate_by_name = True
        arbitrary_types_allowed = True
        json_encoders = {datetime: lambda v: v.isoformat()}
