"""Query parameter validation for the JSON API."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from grocery_tracker.db.models import NotificationStatus, NotificationType, Priority


class NotificationQuery(BaseModel):
    status: Optional[NotificationStatus] = None
    type: Optional[NotificationType] = None
    priority: Optional[Priority] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class ReportQuery(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    days: Optional[int] = Field(None, ge=1, le=366)

    @model_validator(mode="after")
    def check_range(self):
        """Reject ranges that end before they start."""
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self
