from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.base import Base
from kiosk_pairing.models.inventory_asset import InventoryAsset


class AssetLink(Base):
    __tablename__ = "asset_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Unique: a kiosk links to at most one asset at a time
    kiosk_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("inventory_assets.id", ondelete="CASCADE"))
    linked_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    linked_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    asset: Mapped[InventoryAsset] = relationship("InventoryAsset", lazy="joined")
