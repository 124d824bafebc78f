"""Wire format of pairing events on the ``kiosks`` topic."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_serializer


class PairingEventPayload(BaseModel):
    type: Literal["activated", "expired", "revoked"]
    kiosk_id: str
    code: str
    occurred_at: datetime

    @field_serializer("occurred_at")
    def serialize_occurred_at(self, value: datetime) -> str:
        return value.isoformat()


class SweepResponse(BaseModel):
    expired: int
    redelivered: int
