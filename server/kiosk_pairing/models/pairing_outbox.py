from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.base import Base


class PairingOutbox(Base):
    """Pairing events waiting for (or already given) delivery on the event bus.

    Rows are written in the same transaction as the code transition they
    describe, so a crash between commit and publish leaves the event here for
    the reconciliation sweep.
    """

    __tablename__ = "pairing_outbox"
    __table_args__ = (Index("ix_pairing_outbox_undelivered", "delivered_at", "attempts"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    topic: Mapped[str] = mapped_column(String(30), default="kiosks", index=True)
    event_type: Mapped[str] = mapped_column(String(20))  # activated / expired / revoked
    kiosk_id: Mapped[str] = mapped_column(String(64), index=True)
    code: Mapped[str] = mapped_column(String(32))
    occurred_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
