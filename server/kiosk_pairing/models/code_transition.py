from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.base import Base


class CodeTransition(Base):
    """Append-only history of activation code state changes."""

    __tablename__ = "code_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), index=True)
    kiosk_id: Mapped[str] = mapped_column(String(64), index=True)
    from_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_state: Mapped[str] = mapped_column(String(20))
    actor: Mapped[str] = mapped_column(String(160))  # device:<fp> / user:<id> / sweeper
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
