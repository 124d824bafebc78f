"""Activation store: persistence for activation codes.

This module is the only code that changes ``ActivationCode.state``. Every
transition is a conditional ``UPDATE ... WHERE state = 'pending'`` so that
concurrent redeemers and sweepers (in this process or another instance) race
on the database, and exactly one of them sees ``rowcount == 1``. Only that
winner is allowed to record the transition and its pairing event.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kiosk_pairing.core.errors import TransientStoreError
from kiosk_pairing.models.activation_code import ActivationCode, CodeState
from kiosk_pairing.models.code_transition import CodeTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Expiry predicates for conditional transitions
UNEXPIRED = "unexpired"
EXPIRED = "expired"


def get_by_code(db: Session, code: str) -> ActivationCode | None:
    return db.query(ActivationCode).filter(ActivationCode.code == code).first()


def code_exists(db: Session, code: str) -> bool:
    return db.query(ActivationCode.id).filter(ActivationCode.code == code).first() is not None


def get_pending_for_kiosk(db: Session, kiosk_id: str) -> ActivationCode | None:
    return (
        db.query(ActivationCode)
        .filter(
            ActivationCode.kiosk_id == kiosk_id,
            ActivationCode.state == CodeState.PENDING.value,
        )
        .first()
    )


def get_latest_for_kiosk(db: Session, kiosk_id: str) -> ActivationCode | None:
    return (
        db.query(ActivationCode)
        .filter(ActivationCode.kiosk_id == kiosk_id)
        .order_by(ActivationCode.created_at.desc(), ActivationCode.id.desc())
        .first()
    )


def list_codes(db: Session, state: str | None = None, limit: int = 50) -> list[ActivationCode]:
    """Most recent codes first, optionally filtered by state."""
    query = db.query(ActivationCode)
    if state is not None:
        query = query.filter(ActivationCode.state == state)
    return (
        query.order_by(ActivationCode.created_at.desc(), ActivationCode.id.desc())
        .limit(limit)
        .all()
    )


def find_expired_pending(db: Session, now: datetime, limit: int = 500) -> list[tuple[str, str]]:
    """Return ``(code, kiosk_id)`` for pending codes whose expiry has passed."""
    rows = (
        db.query(ActivationCode.code, ActivationCode.kiosk_id)
        .filter(
            ActivationCode.state == CodeState.PENDING.value,
            ActivationCode.expires_at <= now,
        )
        .order_by(ActivationCode.expires_at)
        .limit(limit)
        .all()
    )
    return [(row.code, row.kiosk_id) for row in rows]


def add_code(
    db: Session,
    *,
    code: str,
    kiosk_id: str,
    now: datetime,
    expires_at: datetime,
    kiosk_name: str | None = None,
    location: str | None = None,
    user_id: int | None = None,
) -> ActivationCode:
    """Stage a new pending code in the caller's transaction.

    Uniqueness of ``code`` (and of the pending code per kiosk) is enforced by
    the database; the caller commits and treats IntegrityError as a collision.
    """
    record = ActivationCode(
        code=code,
        kiosk_id=kiosk_id,
        kiosk_name=kiosk_name,
        location=location,
        state=CodeState.PENDING.value,
        created_at=now,
        expires_at=expires_at,
        issued_by_user_id=user_id,
    )
    db.add(record)
    db.add(
        CodeTransition(
            code=code,
            kiosk_id=kiosk_id,
            from_state=None,
            to_state=CodeState.PENDING.value,
            actor=f"user:{user_id}" if user_id is not None else "system",
            occurred_at=now,
        )
    )
    return record


def transition(
    db: Session,
    code: str,
    to_state: CodeState,
    *,
    now: datetime,
    actor: str,
    expiry: str | None = None,
    fingerprint: str | None = None,
) -> bool:
    """Conditionally move a pending code to ``to_state``.

    ``expiry`` adds ``expires_at > now`` (UNEXPIRED) or ``expires_at <= now``
    (EXPIRED) to the WHERE clause. Returns True only for the caller whose
    update matched the row. Does not commit.
    """
    query = db.query(ActivationCode).filter(
        ActivationCode.code == code,
        ActivationCode.state == CodeState.PENDING.value,
    )
    if expiry == UNEXPIRED:
        query = query.filter(ActivationCode.expires_at > now)
    elif expiry == EXPIRED:
        query = query.filter(ActivationCode.expires_at <= now)

    values: dict = {"state": to_state.value, "closed_at": now}
    if to_state == CodeState.REDEEMED:
        values["redeemed_at"] = now
        values["redeemed_by_fingerprint"] = fingerprint

    updated = query.update(values, synchronize_session=False)
    if updated != 1:
        logger.debug(
            "Conditional %s transition for %s matched %d rows", to_state.value, code, updated
        )
        return False

    kiosk_id = db.query(ActivationCode.kiosk_id).filter(ActivationCode.code == code).scalar()
    db.add(
        CodeTransition(
            code=code,
            kiosk_id=kiosk_id,
            from_state=CodeState.PENDING.value,
            to_state=to_state.value,
            actor=actor,
            occurred_at=now,
        )
    )
    return True


def get_transitions(db: Session, code: str) -> list[CodeTransition]:
    return (
        db.query(CodeTransition)
        .filter(CodeTransition.code == code)
        .order_by(CodeTransition.id)
        .all()
    )


def run_with_retry(
    db: Session,
    operation: Callable[[], T],
    *,
    max_retries: int,
    initial_backoff: float,
    timeout: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a store operation, retrying OperationalError with exponential backoff.

    The session is rolled back before each retry, so ``operation`` must be
    safe to run again from scratch. Gives up after ``max_retries`` retries or
    once ``timeout`` seconds have elapsed and raises TransientStoreError.
    """
    deadline = clock() + timeout
    last_exception: OperationalError | None = None

    for attempt in range(max_retries + 1):
        try:
            return operation()
        except OperationalError as e:
            db.rollback()
            last_exception = e
            backoff = initial_backoff * (2**attempt)
            if attempt >= max_retries or clock() + backoff >= deadline:
                break
            logger.warning(
                "Store error (attempt %d/%d), retrying in %.2fs: %s",
                attempt + 1,
                max_retries + 1,
                backoff,
                e,
            )
            sleep(backoff)

    logger.error("Store unavailable after retries: %s", last_exception)
    raise TransientStoreError() from last_exception
