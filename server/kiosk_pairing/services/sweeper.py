"""Background expiry sweep and outbox reconciliation.

Runs :func:`pairing.expire_sweep` followed by :func:`pairing.reconcile` on a
fixed interval from the FastAPI lifespan. Each pass uses its own session in a
worker thread, so the event loop keeps serving SSE streams meanwhile. Several
instances may run this loop against the same database.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from kiosk_pairing.services import pairing

logger = logging.getLogger(__name__)


def run_sweep_once(session_factory: Callable[[], Session]) -> tuple[int, int]:
    """One sweep pass. Returns (codes expired, events redelivered)."""
    db = session_factory()
    try:
        expired = pairing.expire_sweep(db)
        redelivered = pairing.reconcile(db)
        return expired, redelivered
    finally:
        db.close()


class PairingSweeper:
    """Interval task wrapper around :func:`run_sweep_once`."""

    def __init__(self, session_factory: Callable[[], Session], interval_seconds: float) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self._run(), name="pairing-sweeper")
            logger.info("Pairing sweeper started (every %ss)", self._interval)
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("Pairing sweeper stopped")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                expired, redelivered = await asyncio.to_thread(
                    run_sweep_once, self._session_factory
                )
                if expired or redelivered:
                    logger.info(
                        "Sweep pass: %d expired, %d redelivered", expired, redelivered
                    )
            except Exception:
                # Keep sweeping; the next pass retries whatever failed here
                logger.exception("Pairing sweep pass failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except TimeoutError:
                continue
