"""Pydantic schemas for kiosk status (admin polling) and kiosk check-ins."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict


class KioskStatusResponse(BaseModel):
    """Current activation state of a kiosk id; the admin poll fallback reads this.

    ``state`` is one of ``active``, ``inactive``, ``pending``, ``expired`` or
    ``revoked``. ``code`` / ``expires_at`` describe the most recent activation
    code, if any; ``activation_code`` is the code the kiosk was last paired
    with, so a poll can tell a fresh pairing from an older one.
    """

    kiosk_id: str
    state: str
    code: str | None = None
    expires_at: datetime | None = None
    activation_code: str | None = None
    activated_at: datetime | None = None
    last_seen_at: datetime | None = None
    name: str | None = None
    location: str | None = None
    operational_status: str | None = None


class KioskOut(BaseModel):
    """Kiosk info for the admin list (no session_token)."""

    model_config = ConfigDict(from_attributes=True)

    kiosk_id: str
    name: str | None
    location: str | None
    status: str
    operational_status: str
    activated_at: datetime
    last_seen_at: datetime | None


class CheckInRequest(BaseModel):
    status: Literal["available", "busy", "maintenance", "offline"] = "available"


class CheckInResponse(BaseModel):
    kiosk_id: str
    status: str
    last_seen_at: datetime
