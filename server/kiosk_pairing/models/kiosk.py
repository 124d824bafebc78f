from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.base import Base


class KioskStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class KioskOperationalStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class Kiosk(Base):
    """A device that has redeemed an activation code."""

    __tablename__ = "kiosks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kiosk_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=KioskStatus.ACTIVE.value)
    operational_status: Mapped[str] = mapped_column(
        String(20), default=KioskOperationalStatus.OFFLINE.value
    )
    session_token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    device_fingerprint: Mapped[str] = mapped_column(String(128))
    activation_code: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    activated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
