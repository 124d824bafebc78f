"""Pydantic schemas for activation code issuance and redemption."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class IssueCodeRequest(BaseModel):
    """Body for issuing a new activation code. All fields optional."""

    kiosk_id: str | None = Field(default=None, max_length=64)
    name: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=200)


class IssuedCodeResponse(BaseModel):
    """Returned to the admin after issuing a code: enough to render code + QR."""

    code: str
    kiosk_id: str
    expires_at: datetime
    activation_url: str
    qr: str | None = None


class ActivationCodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    kiosk_id: str
    kiosk_name: str | None
    location: str | None
    state: str
    created_at: datetime
    expires_at: datetime
    redeemed_at: datetime | None
    closed_at: datetime | None


class RedeemRequest(BaseModel):
    # Blank values reach the service and come back as a 400 VALIDATION_ERROR
    device_fingerprint: str = Field(..., max_length=512)


class RedeemResponse(BaseModel):
    """Returned to the kiosk device after a successful redemption."""

    kiosk_id: str
    session_token: str
    redeemed_at: datetime
    name: str | None = None
    location: str | None = None
    replayed: bool = False


class RevokeResponse(BaseModel):
    revoked: bool
    code: str | None = None
