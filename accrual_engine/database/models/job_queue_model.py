from beanie import Document
from pydantic import Field
from typing import Any, Dict, Optional
from datetime import datetime

from accrual_engine.schemas.job_queue_schema import NotificationStatusEnum


class QueuedNotification(Document):
    job_type: str = Field(..., description="Job type (e.g. 'sms_notification')")
    payload: Dict[str, Any] = Field(..., description="Recipient, message and context of the notification")
    status: NotificationStatusEnum = Field(default=NotificationStatusEnum.pending)
    attempts: int = Field(default=0, description="Delivery attempts made so far")
    max_attempts: int = Field(default=3, description="Attempts allowed before the row is marked failed for good")
    error_message: Optional[str] = Field(None, description="Last delivery error")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    claimed_at: Optional[datetime] = Field(None, description="When the worker last moved the row to processing")
    processed_at: Optional[datetime] = Field(None)

    class Settings:
        name = "job_queue"
        indexes = [
            [("job_type", 1), ("status", 1), ("created_at", 1)],
            [("status", 1), ("claimed_at", 1)],
        ]
