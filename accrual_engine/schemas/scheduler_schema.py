from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TaskError(BaseModel):
    message: str
    stack: Optional[str] = None
    timestamp: datetime


class TaskStatus(BaseModel):
    name: str
    schedule: str = Field(..., description="Human readable cadence, e.g. 'every 4 hours'")
    timezone: str
    enabled: bool
    run_on_init: bool
    quiet: bool = False
    is_running: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    dropped_ticks: int = 0
    last_error: Optional[TaskError] = None
