"""Admin-side pairing watcher.

After issuing a code the admin view waits for the kiosk to redeem it. The
``activated`` event on the SSE stream is the fast path; a status poll every
``poll_interval`` seconds is the safety net for when the stream is down.
Once the code's ``expires_at`` passes with neither confirming activation,
the view shows the code as expired and lets the admin issue a new one.

The notifier state is one explicit value (``Idle``, ``Waiting``, ``Paired``
or ``Expired``), so the UI cannot show "waiting" and "expired" at once.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from kiosk_pairing.core.time import parse_timestamp, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0  # seconds
RECONNECT_DELAY = 2.0  # seconds
HTTP_TIMEOUT = 10.0
STREAM_TOPIC = "kiosks"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Waiting:
    code: str
    kiosk_id: str
    expires_at: datetime


@dataclass(frozen=True)
class Paired:
    kiosk_id: str
    code: str


@dataclass(frozen=True)
class Expired:
    code: str
    kiosk_id: str


NotifierState = Idle | Waiting | Paired | Expired


def _as_datetime(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return parse_timestamp(value)


class AdminNotifier:
    """State machine behind the admin's "waiting for kiosk" view."""

    def __init__(self) -> None:
        self.state: NotifierState = Idle()
        self._seen: set[tuple[str, str, str]] = set()

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.state, (Paired, Expired))

    @property
    def can_reissue(self) -> bool:
        """A new code may be requested when nothing is pending or the last one lapsed."""
        return isinstance(self.state, (Idle, Expired))

    def start_waiting(self, issued: dict[str, Any]) -> Waiting:
        """Enter Waiting for a freshly issued code (the issue endpoint's response body)."""
        self.state = Waiting(
            code=issued["code"],
            kiosk_id=issued["kiosk_id"],
            expires_at=_as_datetime(issued["expires_at"]),
        )
        self._seen.clear()
        return self.state

    def handle_event(self, event: dict[str, Any]) -> bool:
        """Apply a pairing event payload. Returns True if the state changed.

        Events are deduplicated on ``(kiosk_id, type, occurred_at)``, since
        replay and reconciliation can deliver the same event more than once.
        Events for other kiosks or other codes are ignored.
        """
        key = (event.get("kiosk_id", ""), event.get("type", ""), str(event.get("occurred_at")))
        if key in self._seen:
            logger.debug("Duplicate %s event for %s ignored", key[1], key[0])
            return False
        self._seen.add(key)

        state = self.state
        if not isinstance(state, Waiting):
            return False
        if event.get("kiosk_id") != state.kiosk_id or event.get("code") != state.code:
            return False

        event_type = event.get("type")
        if event_type == "activated":
            self.state = Paired(kiosk_id=state.kiosk_id, code=state.code)
        elif event_type in ("expired", "revoked"):
            self.state = Expired(code=state.code, kiosk_id=state.kiosk_id)
        else:
            return False
        logger.info("Kiosk %s: %s via event", state.kiosk_id, event_type)
        return True

    def apply_poll(self, status: dict[str, Any]) -> bool:
        """Apply a kiosk status poll result. Returns True if the state changed."""
        state = self.state
        if not isinstance(state, Waiting) or status.get("kiosk_id") != state.kiosk_id:
            return False
        if status.get("code") != state.code:
            # A newer code was issued elsewhere; this one can no longer pair the kiosk
            if status.get("code") is not None:
                self.state = Expired(code=state.code, kiosk_id=state.kiosk_id)
                return True
            return False

        remote_state = status.get("state")
        if remote_state == "active":
            # Active from an earlier pairing says nothing about this code
            if status.get("activation_code") != state.code:
                return False
            self.state = Paired(kiosk_id=state.kiosk_id, code=state.code)
        elif remote_state in ("expired", "revoked", "inactive"):
            self.state = Expired(code=state.code, kiosk_id=state.kiosk_id)
        else:
            return False
        logger.info("Kiosk %s: %s via poll", state.kiosk_id, remote_state)
        return True

    def tick(self, now: datetime | None = None) -> bool:
        """Expire the wait once ``expires_at`` has passed without confirmation."""
        state = self.state
        if not isinstance(state, Waiting):
            return False
        if (now or utcnow()) < state.expires_at:
            return False
        self.state = Expired(code=state.code, kiosk_id=state.kiosk_id)
        logger.info("Kiosk %s: code expired without activation", state.kiosk_id)
        return True

    def reset(self) -> None:
        self.state = Idle()
        self._seen.clear()


def parse_sse_lines(lines: list[str]) -> dict[str, Any] | None:
    """Turn the lines of one SSE message into ``{"id", "event", "data"}``.

    Returns None for keepalive comments and messages without data.
    """
    message: dict[str, Any] = {"id": None, "event": "message"}
    data_lines = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            message["event"] = value
        elif field == "id":
            message["id"] = value
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        message["data"] = json.loads(raw)
    except json.JSONDecodeError:
        message["data"] = raw
    return message


class PairingClient:
    """Thin async HTTP client for the pairing API, as used by an admin console."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=HTTP_TIMEOUT)
        self._token = token
        self.last_event_id: str | None = None

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def login(self, username: str, password: str) -> str:
        response = await self._client.post(
            "/api/auth/login", data={"username": username, "password": password}
        )
        response.raise_for_status()
        self._token = response.json()["access_token"]
        return self._token

    async def issue_code(
        self,
        kiosk_id: str | None = None,
        name: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        body = {"kiosk_id": kiosk_id, "name": name, "location": location}
        response = await self._client.post(
            "/api/activation-codes",
            json={k: v for k, v in body.items() if v is not None},
            headers=self._headers(),
        )
        response.raise_for_status()
        return response.json()

    async def get_kiosk_status(self, kiosk_id: str) -> dict[str, Any]:
        response = await self._client.get(f"/api/kiosks/{kiosk_id}", headers=self._headers())
        response.raise_for_status()
        return response.json()

    async def iter_events(
        self,
        topic: str = STREAM_TOPIC,
        reconnect: bool = True,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield SSE messages from the pairing stream, reconnecting on failure.

        On reconnect the last seen id is sent as ``Last-Event-ID`` so the
        server replays what was missed.
        """
        while True:
            headers = {"Accept": "text/event-stream", **self._headers()}
            if self.last_event_id is not None:
                headers["Last-Event-ID"] = self.last_event_id
            try:
                async with self._client.stream(
                    "GET", f"/api/stream/{topic}", headers=headers, timeout=None
                ) as response:
                    response.raise_for_status()
                    buffer: list[str] = []
                    async for line in response.aiter_lines():
                        if line:
                            buffer.append(line)
                            continue
                        message = parse_sse_lines(buffer)
                        buffer = []
                        if message is None:
                            continue
                        if message["id"] is not None:
                            self.last_event_id = message["id"]
                        yield message
            except httpx.HTTPError as e:
                logger.warning("Pairing stream error: %s", e)

            if not reconnect:
                return
            logger.info("Pairing stream closed, reconnecting in %.1fs", reconnect_delay)
            await asyncio.sleep(reconnect_delay)


async def _follow_stream(
    client: PairingClient, notifier: AdminNotifier, done: asyncio.Event
) -> None:
    try:
        async for message in client.iter_events():
            if isinstance(message.get("data"), dict) and notifier.handle_event(message["data"]):
                if notifier.is_terminal:
                    done.set()
                    return
    except httpx.HTTPError as e:
        # Polling carries on without the stream
        logger.warning("Pairing stream unavailable: %s", e)


async def watch_pairing(
    client: PairingClient,
    notifier: AdminNotifier,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    clock: Callable[[], datetime] = utcnow,
) -> NotifierState:
    """Wait until the notifier's code is paired or lapses.

    Follows the event stream in the background and polls kiosk status every
    ``poll_interval`` seconds (and once more at expiry). Stream failures only
    cost latency; the poll still reaches the right answer.
    """
    if not isinstance(notifier.state, Waiting):
        return notifier.state

    done = asyncio.Event()
    stream_task = asyncio.create_task(_follow_stream(client, notifier, done))
    try:
        while not notifier.is_terminal:
            state = notifier.state
            remaining = (state.expires_at - clock()).total_seconds()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(done.wait(), timeout=max(min(poll_interval, remaining), 0))
            if notifier.is_terminal:
                break

            try:
                notifier.apply_poll(await client.get_kiosk_status(state.kiosk_id))
            except httpx.HTTPError as e:
                logger.warning("Kiosk status poll failed: %s", e)
            notifier.tick(clock())
    finally:
        stream_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await stream_task

    return notifier.state
