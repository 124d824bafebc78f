"""SSE stream of pairing events (no authentication required).

Each message carries the outbox id as its SSE ``id``. A client reconnecting
with ``Last-Event-ID`` (or ``?last_event_id=``) first receives every stored
event after that id, then live events. Delivery is at-least-once.
"""

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from kiosk_pairing.api.deps import get_db
from kiosk_pairing.services import outbox
from kiosk_pairing.services.event_bus import get_event_bus

logger = logging.getLogger(__name__)
router = APIRouter()

DISCONNECT_CHECK_INTERVAL = 15  # seconds
REPLAY_LIMIT = 500

TOPICS = frozenset({outbox.KIOSKS_TOPIC})


def _parse_event_id(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return max(int(raw.strip()), 0)
    except ValueError:
        return None


def _load_replay(db: Session, topic: str, last_event_id: int | None) -> list[dict[str, Any]]:
    if last_event_id is None:
        return []
    rows = outbox.events_since(db, topic, last_event_id, limit=REPLAY_LIMIT)
    return [
        {"id": row.id, "event": row.event_type, "data": outbox.event_payload(row)} for row in rows
    ]


async def _event_generator(
    request: Request,
    topic: str,
    queue: asyncio.Queue,
    replay: list[dict[str, Any]],
) -> Any:
    """Yield replayed events, then live ones until the client disconnects.

    Keepalive pings are handled by sse-starlette's built-in ping task.
    Live messages at or below the last replayed id were already sent.
    """
    bus = get_event_bus()
    last_sent = 0
    try:
        for message in replay:
            last_sent = message["id"]
            yield {
                "id": str(message["id"]),
                "event": message["event"],
                "data": json.dumps(message["data"]),
            }

        while True:
            if await request.is_disconnected():
                break
            try:
                message = await asyncio.wait_for(queue.get(), timeout=DISCONNECT_CHECK_INTERVAL)
            except TimeoutError:
                continue
            event_id = message.get("id")
            if event_id is not None and event_id <= last_sent:
                continue
            event = {"event": message["event"], "data": json.dumps(message["data"])}
            if event_id is not None:
                event["id"] = str(event_id)
                last_sent = event_id
            yield event
    finally:
        bus.unsubscribe(topic, queue)


@router.get("/{topic}")
async def pairing_stream(
    topic: str,
    request: Request,
    last_event_id: int | None = None,
    last_event_id_header: str | None = Header(default=None, alias="Last-Event-ID"),
    db: Session = Depends(get_db),
) -> EventSourceResponse:
    """Public SSE endpoint for pairing events.

    Event types on ``kiosks``:
    - activated: a kiosk redeemed its code
    - expired: a pending code passed its expiry
    - revoked: a pending code was revoked or superseded
    """
    if topic not in TOPICS:
        raise HTTPException(status_code=404, detail="Unknown topic")

    resume_from = _parse_event_id(last_event_id_header)
    if resume_from is None and last_event_id is not None:
        resume_from = max(last_event_id, 0)

    # Subscribe before reading the replay so nothing falls between the two
    bus = get_event_bus()
    queue = bus.subscribe(topic)
    try:
        replay = _load_replay(db, topic, resume_from)
    except Exception:
        bus.unsubscribe(topic, queue)
        raise
    if replay:
        logger.info("Replaying %d %s event(s) after id %s", len(replay), topic, resume_from)

    return EventSourceResponse(
        _event_generator(request, topic, queue, replay),
        media_type="text/event-stream",
        headers={"X-Accel-Buffering": "no"},
    )
