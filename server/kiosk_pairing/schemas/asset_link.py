from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AssetLinkRequest(BaseModel):
    """Body for linking a kiosk to an inventory asset (tag or serial required)."""

    asset_tag: str | None = Field(default=None, max_length=64)
    serial_number: str | None = Field(default=None, max_length=128)


class AssetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_tag: str | None
    serial_number: str | None
    name: str | None


class AssetLinkOut(BaseModel):
    kiosk_id: str
    asset: AssetOut
    linked_at: datetime
    changed: bool = True
