from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


JOB_TYPE_SMS_NOTIFICATION = "sms_notification"


class NotificationStatusEnum(str, Enum):
    pending = "pending"
    processing = "processing"
    sent = "sent"
    failed = "failed"


class NotificationPayload(BaseModel):
    recipient: str = Field(..., description="Recipient phone number")
    message: str = Field(..., description="SMS body")
    message_type: str = Field(default="general", description="Message category for logging (e.g. 'acc_manager_assigned')")
    loan_id: Optional[int] = Field(None, description="Loan the notification is about, if any")


class ClaimedNotification(BaseModel):
    id: str
    payload: NotificationPayload
    attempts: int
    max_attempts: int


class QueueRunResult(BaseModel):
    processed: int = 0
    failed: int = 0


class ReminderRule(BaseModel):
    """Sends ``message`` to loans whose DPD is one of ``dpd_values`` or within ``dpd_min``..``dpd_max``."""
    template_key: str = Field(..., description="Message type recorded on the queued payload")
    message: str = Field(..., description="Template with {placeholders} filled from the loan")
    dpd_values: Optional[List[int]] = Field(None, description="Exact DPD values (negative before the due date)")
    dpd_min: Optional[int] = None
    dpd_max: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self):
        if self.dpd_values is None and (self.dpd_min is None or self.dpd_max is None):
            raise ValueError("A reminder rule needs dpd_values or both dpd_min and dpd_max")
        if self.dpd_min is not None and self.dpd_max is not None and self.dpd_max < self.dpd_min:
            raise ValueError("dpd_max must not be below dpd_min")
        return self

    def matches(self, dpd: int) -> bool:
        if self.dpd_values is not None:
            return dpd in self.dpd_values
        return self.dpd_min <= dpd <= self.dpd_max
