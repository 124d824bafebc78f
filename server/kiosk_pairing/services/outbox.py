"""Transactional outbox for pairing events.

A pairing event is written to ``pairing_outbox`` in the same transaction as
the code transition it describes. After commit it is published on the event
bus; a row counts as delivered once at least one subscriber accepted it.
Rows that nobody accepted (no admin watching, or a crash between commit and
publish) are retried by :func:`reconcile` until ``outbox_max_attempts``.
Delivery is therefore at-least-once and subscribers deduplicate.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.pairing_outbox import PairingOutbox
from kiosk_pairing.schemas.event import PairingEventPayload
from kiosk_pairing.services.event_bus import EventBus, get_event_bus

logger = logging.getLogger(__name__)

KIOSKS_TOPIC = "kiosks"


def record_event(
    db: Session,
    event_type: str,
    kiosk_id: str,
    code: str,
    occurred_at: datetime,
    topic: str = KIOSKS_TOPIC,
) -> PairingOutbox:
    """Stage an outbox row in the caller's transaction (flushed to get its id)."""
    row = PairingOutbox(
        topic=topic,
        event_type=event_type,
        kiosk_id=kiosk_id,
        code=code,
        occurred_at=occurred_at,
        created_at=occurred_at,
        attempts=0,
    )
    db.add(row)
    db.flush()
    return row


def event_payload(row: PairingOutbox) -> dict[str, Any]:
    """Wire payload of a pairing event."""
    return PairingEventPayload(
        type=row.event_type,
        kiosk_id=row.kiosk_id,
        code=row.code,
        occurred_at=row.occurred_at,
    ).model_dump()


def dispatch(
    db: Session,
    ids: list[int] | None = None,
    bus: EventBus | None = None,
    now: datetime | None = None,
) -> int:
    """Publish undelivered outbox rows in id order and record the outcome.

    ``ids`` restricts dispatch to rows the caller just created; None means
    every undelivered row still under the attempt limit. Returns the number
    of rows delivered to at least one subscriber.
    """
    bus = bus or get_event_bus()
    now = now or utcnow()
    max_attempts = get_settings().outbox_max_attempts

    query = db.query(PairingOutbox).filter(PairingOutbox.delivered_at.is_(None))
    if ids is not None:
        if not ids:
            return 0
        query = query.filter(PairingOutbox.id.in_(ids))
    else:
        query = query.filter(PairingOutbox.attempts < max_attempts)

    delivered = 0
    for row in query.order_by(PairingOutbox.id).all():
        accepted = bus.publish(row.topic, row.event_type, event_payload(row), event_id=row.id)
        row.attempts += 1
        row.last_attempt_at = now
        if accepted:
            row.delivered_at = now
            delivered += 1
        elif row.attempts >= max_attempts:
            logger.warning(
                "Giving up on %s event for %s after %d attempts",
                row.event_type,
                row.kiosk_id,
                row.attempts,
            )
    db.commit()
    return delivered


def reconcile(db: Session, bus: EventBus | None = None, now: datetime | None = None) -> int:
    """Re-publish every undelivered event. Returns the number delivered."""
    delivered = dispatch(db, None, bus=bus, now=now)
    if delivered:
        logger.info("Reconciliation redelivered %d pairing event(s)", delivered)
    return delivered


def events_since(
    db: Session, topic: str, last_event_id: int, limit: int = 100
) -> list[PairingOutbox]:
    """Outbox rows after ``last_event_id``, for replay to a reconnecting subscriber."""
    return (
        db.query(PairingOutbox)
        .filter(PairingOutbox.topic == topic, PairingOutbox.id > last_event_id)
        .order_by(PairingOutbox.id)
        .limit(limit)
        .all()
    )


def undelivered_count(db: Session) -> int:
    return db.query(PairingOutbox).filter(PairingOutbox.delivered_at.is_(None)).count()
