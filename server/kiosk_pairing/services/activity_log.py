"""Audit sink: activity log entries for pairing transitions, asset links and sweeps."""

import logging

from sqlalchemy.orm import Session

from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    level: str,
    source: str,
    message: str,
    kiosk_id: str | None = None,
    user_id: int | None = None,
    commit: bool = True,
) -> ActivityLog:
    """Create an activity log entry.

    Pass ``commit=False`` to add the entry to the caller's open transaction,
    so the audit row lands atomically with the change it describes.
    """
    entry = ActivityLog(
        created_at=utcnow(),
        level=level,
        source=source,
        message=message[:500],
        kiosk_id=kiosk_id,
        user_id=user_id,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    return entry


def get_recent_activity(
    db: Session,
    limit: int = 50,
    kiosk_id: str | None = None,
    source: str | None = None,
) -> list[ActivityLog]:
    """Get recent activity log entries, newest first."""
    query = db.query(ActivityLog)
    if kiosk_id is not None:
        query = query.filter(ActivityLog.kiosk_id == kiosk_id)
    if source is not None:
        query = query.filter(ActivityLog.source == source)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
