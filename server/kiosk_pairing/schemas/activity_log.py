"""Schemas for the activity (audit) log."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ActivityLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    level: str
    source: str
    message: str
    kiosk_id: str | None = None
    user_id: int | None = None
