"""Escalating lockout for clients that keep presenting bad activation codes.

Activation codes carry 40 bits of entropy and live for minutes, but the
redeem endpoint is unauthenticated, so repeated misses from one client are
throttled on top of the per-minute rate limit.

NOTE: state lives in an in-memory dict guarded by threading.Lock, so each
worker process enforces its own lockouts.
"""

import time
from dataclasses import dataclass
from threading import Lock


@dataclass
class FailedRedemptions:
    """Failed redemption attempts for one client."""

    count: int = 0
    first_failure: float = 0.0
    lockout_until: float = 0.0


class RedemptionLockout:
    """Track failed redemptions per client and lock noisy clients out.

    Escalation policy:
    - 10 misses: 5 minute lockout
    - 25 misses: 60 minute lockout
    """

    THRESHOLD_1 = 10
    LOCKOUT_1_SECONDS = 5 * 60

    THRESHOLD_2 = 25
    LOCKOUT_2_SECONDS = 60 * 60

    # Forget clients whose last miss is older than this
    RETENTION_SECONDS = 2 * 60 * 60

    def __init__(self, clock=time.monotonic) -> None:
        self._attempts: dict[str, FailedRedemptions] = {}
        self._lock = Lock()
        self._clock = clock
        self._last_cleanup = clock()

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < 60:
            return
        self._last_cleanup = now
        stale = [
            key
            for key, entry in self._attempts.items()
            if entry.lockout_until < now and now - entry.first_failure > self.RETENTION_SECONDS
        ]
        for key in stale:
            del self._attempts[key]

    def is_locked_out(self, client: str) -> tuple[bool, int]:
        """Return (is_locked, seconds_remaining) for a client key."""
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            entry = self._attempts.get(client)
            if entry and entry.lockout_until > now:
                return True, int(entry.lockout_until - now) + 1
            return False, 0

    def record_failure(self, client: str) -> tuple[bool, int]:
        """Count a miss. Returns (is_now_locked, lockout_seconds)."""
        with self._lock:
            now = self._clock()
            entry = self._attempts.get(client)
            stale = entry is not None and (
                entry.lockout_until < now and now - entry.first_failure > self.RETENTION_SECONDS
            )
            if entry is None or stale:
                entry = FailedRedemptions(count=0, first_failure=now)
                self._attempts[client] = entry
            entry.count += 1

            if entry.count >= self.THRESHOLD_2:
                entry.lockout_until = now + self.LOCKOUT_2_SECONDS
                return True, self.LOCKOUT_2_SECONDS
            if entry.count >= self.THRESHOLD_1:
                entry.lockout_until = now + self.LOCKOUT_1_SECONDS
                return True, self.LOCKOUT_1_SECONDS
            return False, 0

    def record_success(self, client: str) -> None:
        """Clear a client's history after a successful redemption."""
        with self._lock:
            self._attempts.pop(client, None)


redemption_lockout = RedemptionLockout()
