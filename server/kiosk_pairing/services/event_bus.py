"""In-memory pub/sub event bus for SSE real-time updates.

One bus per process. Channels are keyed by topic (``kiosks`` carries pairing
events). Subscribers are asyncio.Queue instances bound to the event loop that
created them; publishing from a worker thread (sync endpoints, the sweeper)
hands the message to that loop with ``call_soon_threadsafe`` and counts it
only once the loop reports the put succeeded.

The bus holds no authoritative state: durability comes from the pairing
outbox, which re-publishes anything no subscriber accepted.
"""

import asyncio
import logging
from collections import defaultdict
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

QUEUE_MAXSIZE = 64

# Seconds a worker thread waits for a subscriber loop to take a message
HANDOFF_TIMEOUT = 1.0

Message = dict[str, Any]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@dataclass(eq=False)
class _Subscription:
    queue: asyncio.Queue[Message]
    loop: asyncio.AbstractEventLoop | None = field(default=None)


class EventBus:
    """Process-local pub/sub for broadcasting events to SSE subscribers."""

    def __init__(self) -> None:
        self._channels: dict[str, dict[asyncio.Queue[Message], _Subscription]] = defaultdict(dict)

    def subscribe(self, topic: str) -> asyncio.Queue[Message]:
        """Subscribe to a topic. Returns a Queue to read from."""
        queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=QUEUE_MAXSIZE)
        self._channels[topic][queue] = _Subscription(queue=queue, loop=_running_loop())
        logger.debug("Subscriber added for %s (total: %d)", topic, len(self._channels[topic]))
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue[Message]) -> None:
        """Remove a subscriber."""
        channel = self._channels.get(topic)
        if channel is None:
            return
        channel.pop(queue, None)
        if not channel:
            del self._channels[topic]

    def publish(
        self,
        topic: str,
        event_type: str,
        data: dict[str, Any] | None = None,
        event_id: int | None = None,
    ) -> int:
        """Publish an event to all subscribers of a topic.

        Drops messages for full queues (slow consumers). A publish from a
        thread other than the subscriber's loop waits at most HANDOFF_TIMEOUT
        for that loop to take the message.
        Returns the number of subscribers that accepted the message.
        """
        message: Message = {"event": event_type, "data": data or {}}
        if event_id is not None:
            message["id"] = event_id

        current = _running_loop()
        accepted = 0
        for sub in list(self._channels.get(topic, {}).values()):
            if sub.loop is None or sub.loop is current:
                try:
                    sub.queue.put_nowait(message)
                except asyncio.QueueFull:
                    logger.warning("Queue full for %s, dropping %s event", topic, event_type)
                    continue
            elif not _hand_off(sub, message, topic):
                continue
            accepted += 1
        return accepted

    def subscriber_count(self, topic: str) -> int:
        """Return the number of active subscribers for a topic."""
        return len(self._channels.get(topic, {}))


def _hand_off(sub: _Subscription, message: Message, topic: str) -> bool:
    """Put ``message`` on a queue owned by another thread's loop.

    Waits up to HANDOFF_TIMEOUT for the loop to report whether the put
    succeeded. A handoff that times out is not counted; it may still land
    later, and the outbox redelivery covers the gap either way.
    """
    offered: Future[bool] = Future()
    try:
        sub.loop.call_soon_threadsafe(_offer, sub.queue, message, topic, offered)
    except RuntimeError:
        # Loop closed since the subscription was made
        return False
    try:
        return offered.result(timeout=HANDOFF_TIMEOUT)
    except FutureTimeoutError:
        logger.warning("Event loop busy, %s event for %s not confirmed", message["event"], topic)
        return False


def _offer(
    queue: asyncio.Queue[Message], message: Message, topic: str, offered: Future[bool]
) -> None:
    try:
        queue.put_nowait(message)
    except asyncio.QueueFull:
        logger.warning("Queue full for %s, dropping %s event", topic, message["event"])
        offered.set_result(False)
    else:
        offered.set_result(True)


# Singleton instance
_bus = EventBus()


def get_event_bus() -> EventBus:
    """Get the singleton event bus instance."""
    return _bus
