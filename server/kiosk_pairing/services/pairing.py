"""Kiosk pairing service: the activation code state machine.

    pending --redeem--> redeemed
    pending --expiry--> expired
    pending --revoke--> revoked   (explicit, or by issuing a newer code for the kiosk)

Every transition goes through :mod:`activation_store`'s conditional update,
is committed together with its audit row and outbox event, and only then
published. Functions take the request's Session and an optional ``now`` so
the whole machine can be driven deterministically.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.errors import (
    ConflictError,
    ExpiredError,
    GenerationExhausted,
    InvalidArgument,
    NotFoundError,
    ValidationError,
)
from kiosk_pairing.core.time import utcnow
from kiosk_pairing.core.validation import (
    is_valid_activation_code,
    normalize_activation_code,
    normalize_fingerprint,
    normalize_optional_text,
    validate_kiosk_id,
)
from kiosk_pairing.models.activation_code import ActivationCode, CodeState
from kiosk_pairing.models.kiosk import Kiosk, KioskOperationalStatus, KioskStatus
from kiosk_pairing.services import activation_store, outbox
from kiosk_pairing.services.activity_log import log_activity
from kiosk_pairing.services.code_generator import (
    compute_expiry,
    generate_activation_code,
    generate_kiosk_id,
    generate_session_token,
)

logger = logging.getLogger(__name__)

SWEEPER_ACTOR = "sweeper"


@dataclass
class RedemptionResult:
    kiosk_id: str
    code: str
    session_token: str
    redeemed_at: datetime
    name: str | None = None
    location: str | None = None
    replayed: bool = False


@dataclass
class KioskPairingStatus:
    kiosk_id: str
    state: str
    code: str | None = None
    expires_at: datetime | None = None
    activation_code: str | None = None
    activated_at: datetime | None = None
    last_seen_at: datetime | None = None
    name: str | None = None
    location: str | None = None
    operational_status: str | None = None


def _user_actor(user_id: int | None) -> str:
    return f"user:{user_id}" if user_id is not None else "system"


def _close_pending_for_kiosk(db: Session, kiosk_id: str, now: datetime, actor: str) -> list[int]:
    """Take the kiosk's pending code (if any) out of pending.

    A code already past its expiry is marked expired rather than revoked.
    Returns the ids of the outbox rows staged; does not commit.
    """
    pending = activation_store.get_pending_for_kiosk(db, kiosk_id)
    if pending is None:
        return []

    if pending.expires_at <= now:
        to_state, expiry, event_type = CodeState.EXPIRED, activation_store.EXPIRED, "expired"
    else:
        to_state, expiry, event_type = CodeState.REVOKED, activation_store.UNEXPIRED, "revoked"

    if not activation_store.transition(
        db, pending.code, to_state, now=now, actor=actor, expiry=expiry
    ):
        return []
    logger.info("Activation code for %s %s", kiosk_id, to_state.value)
    return [outbox.record_event(db, event_type, kiosk_id, pending.code, now).id]


def issue_code(
    db: Session,
    kiosk_id: str | None = None,
    kiosk_name: str | None = None,
    location: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> ActivationCode:
    """Issue a new pending activation code for a kiosk.

    Any pending code for the same kiosk id is revoked first, so a kiosk never
    has two redeemable codes. Collisions (on the code itself, or with a
    concurrent issuance for the same kiosk) are retried with a fresh code up
    to ``code_generation_max_attempts`` times.

    Raises:
        InvalidArgument: If a supplied kiosk id is malformed.
        GenerationExhausted: If no attempt produced a storable code.
    """
    settings = get_settings()

    if kiosk_id is not None:
        kiosk_id = kiosk_id.strip()
        if not validate_kiosk_id(kiosk_id):
            raise InvalidArgument(
                "kiosk_id must be 1-64 letters, digits, '.', '-' or '_'"
            )
    else:
        kiosk_id = generate_kiosk_id()
    kiosk_name = normalize_optional_text(kiosk_name, 100)
    location = normalize_optional_text(location, 200)
    actor = _user_actor(user_id)
    max_attempts = settings.code_generation_max_attempts

    for attempt in range(1, max_attempts + 1):
        now_ = now or utcnow()
        code = generate_activation_code(settings.activation_code_bytes)
        if activation_store.code_exists(db, code):
            logger.warning("Activation code collision (attempt %d/%d)", attempt, max_attempts)
            continue

        event_ids = _close_pending_for_kiosk(db, kiosk_id, now_, actor)
        record = activation_store.add_code(
            db,
            code=code,
            kiosk_id=kiosk_id,
            now=now_,
            expires_at=compute_expiry(now_, settings.activation_code_ttl_minutes),
            kiosk_name=kiosk_name,
            location=location,
            user_id=user_id,
        )
        log_activity(
            db,
            "info",
            "pairing",
            f"Issued activation code for {kiosk_id}",
            kiosk_id=kiosk_id,
            user_id=user_id,
            commit=False,
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "Concurrent issuance for %s (attempt %d/%d), retrying",
                kiosk_id,
                attempt,
                max_attempts,
            )
            continue

        db.refresh(record)
        outbox.dispatch(db, event_ids)
        logger.info("Issued activation code for %s, expires %s", kiosk_id, record.expires_at)
        return record

    logger.critical(
        "Activation code generation exhausted after %d attempts for %s", max_attempts, kiosk_id
    )
    log_activity(
        db,
        "error",
        "pairing",
        f"Activation code generation exhausted after {max_attempts} attempts",
        kiosk_id=kiosk_id,
        user_id=user_id,
    )
    raise GenerationExhausted()


def redeem(
    db: Session,
    code: str,
    device_fingerprint: str,
    now: datetime | None = None,
) -> RedemptionResult:
    """Redeem an activation code from a kiosk device.

    Exactly one redemption of a code succeeds. Repeating the successful
    redemption with the same fingerprint (a retry after a lost response)
    returns the stored result with ``replayed=True``; any other attempt on a
    non-pending code fails.

    Raises:
        ValidationError: Empty code or fingerprint.
        NotFoundError: No such code.
        ExpiredError: Past ``expires_at`` (the code is marked expired).
        ConflictError: Already redeemed by another device, or revoked.
        TransientStoreError: The store kept failing within the redeem timeout.
    """
    normalized = normalize_activation_code(code)
    fingerprint = normalize_fingerprint(device_fingerprint)
    if not normalized:
        raise ValidationError("Activation code is required")
    if not fingerprint:
        raise ValidationError("Device fingerprint is required")
    if not is_valid_activation_code(normalized):
        raise NotFoundError("Activation code not found")

    settings = get_settings()
    return activation_store.run_with_retry(
        db,
        lambda: _redeem_once(db, normalized, fingerprint, now or utcnow()),
        max_retries=settings.store_max_retries,
        initial_backoff=settings.store_initial_backoff,
        timeout=settings.redeem_timeout_seconds,
    )


def _redeem_once(db: Session, code: str, fingerprint: str, now: datetime) -> RedemptionResult:
    record = activation_store.get_by_code(db, code)
    if record is None:
        raise NotFoundError("Activation code not found")

    if record.state == CodeState.PENDING.value:
        actor = f"device:{fingerprint}"
        if now >= record.expires_at:
            _expire_code(db, record, now, actor)
            raise ExpiredError()

        won = activation_store.transition(
            db,
            code,
            CodeState.REDEEMED,
            now=now,
            actor=actor,
            expiry=activation_store.UNEXPIRED,
            fingerprint=fingerprint,
        )
        if won:
            return _complete_redemption(db, record, fingerprint, now)

        # Lost the race to another redeemer/sweeper: look at what won
        db.rollback()
        record = activation_store.get_by_code(db, code)

    return _resolve_closed_code(db, record, fingerprint, now)


def _complete_redemption(
    db: Session, record: ActivationCode, fingerprint: str, now: datetime
) -> RedemptionResult:
    kiosk_id = record.kiosk_id
    code = record.code
    kiosk = _upsert_kiosk(db, record, fingerprint, now)
    event = outbox.record_event(db, "activated", kiosk_id, code, now)
    log_activity(
        db,
        "info",
        "pairing",
        f"Kiosk {kiosk_id} activated",
        kiosk_id=kiosk_id,
        commit=False,
    )
    db.commit()
    result = RedemptionResult(
        kiosk_id=kiosk_id,
        code=code,
        session_token=kiosk.session_token,
        redeemed_at=now,
        name=kiosk.name,
        location=kiosk.location,
    )
    outbox.dispatch(db, [event.id])
    logger.info("Kiosk %s activated with code %s", kiosk_id, code)
    return result


def _upsert_kiosk(db: Session, record: ActivationCode, fingerprint: str, now: datetime) -> Kiosk:
    settings = get_settings()
    kiosk = get_kiosk(db, record.kiosk_id)
    token = generate_session_token(settings.kiosk_session_token_bytes)
    if kiosk is None:
        kiosk = Kiosk(
            kiosk_id=record.kiosk_id,
            name=record.kiosk_name or f"Kiosk {record.kiosk_id}",
            location=record.location,
            created_at=now,
        )
        db.add(kiosk)
    else:
        # Re-pairing (replacement device): keep admin-set fields unless the code overrides them
        kiosk.name = record.kiosk_name or kiosk.name
        kiosk.location = record.location or kiosk.location

    kiosk.status = KioskStatus.ACTIVE.value
    kiosk.operational_status = KioskOperationalStatus.OFFLINE.value
    kiosk.session_token = token
    kiosk.device_fingerprint = fingerprint
    kiosk.activation_code = record.code
    kiosk.activated_at = now
    return kiosk


def _resolve_closed_code(
    db: Session, record: ActivationCode, fingerprint: str, now: datetime
) -> RedemptionResult:
    if record.state == CodeState.REDEEMED.value:
        if record.redeemed_by_fingerprint == fingerprint:
            kiosk = get_kiosk(db, record.kiosk_id)
            if (
                kiosk is not None
                and kiosk.activation_code == record.code
                and kiosk.status == KioskStatus.ACTIVE.value
            ):
                logger.info("Replayed redemption of %s by the same device", record.code)
                return RedemptionResult(
                    kiosk_id=kiosk.kiosk_id,
                    code=record.code,
                    session_token=kiosk.session_token,
                    redeemed_at=record.redeemed_at,
                    name=kiosk.name,
                    location=kiosk.location,
                    replayed=True,
                )
        raise ConflictError("Activation code has already been redeemed")
    if record.state == CodeState.REVOKED.value:
        raise ConflictError("Activation code has been revoked")
    if record.state == CodeState.EXPIRED.value or now >= record.expires_at:
        raise ExpiredError()
    raise ConflictError()


def _expire_code(db: Session, record: ActivationCode, now: datetime, actor: str) -> bool:
    """Lazily expire a pending code found past its expiry on read."""
    code, kiosk_id = record.code, record.kiosk_id
    if not activation_store.transition(
        db, code, CodeState.EXPIRED, now=now, actor=actor, expiry=activation_store.EXPIRED
    ):
        db.rollback()
        return False
    event = outbox.record_event(db, "expired", kiosk_id, code, now)
    db.commit()
    outbox.dispatch(db, [event.id])
    return True


def expire_sweep(db: Session, now: datetime | None = None) -> int:
    """Expire every pending code past its expiry.

    Safe to run from any number of instances at once: each row is a
    separate conditional update, and only the instance whose update matched
    stages the ``expired`` event. Returns how many codes this call expired.
    """
    now = now or utcnow()
    event_ids: list[int] = []
    for code, kiosk_id in activation_store.find_expired_pending(db, now):
        if activation_store.transition(
            db,
            code,
            CodeState.EXPIRED,
            now=now,
            actor=SWEEPER_ACTOR,
            expiry=activation_store.EXPIRED,
        ):
            event_ids.append(outbox.record_event(db, "expired", kiosk_id, code, now).id)
        db.commit()

    if event_ids:
        logger.info("Expiry sweep expired %d activation code(s)", len(event_ids))
        log_activity(
            db, "info", "sweeper", f"Expired {len(event_ids)} activation code(s)"
        )
        outbox.dispatch(db, event_ids)
    return len(event_ids)


def revoke(
    db: Session,
    kiosk_id: str,
    user_id: int | None = None,
    now: datetime | None = None,
) -> ActivationCode | None:
    """Revoke the kiosk's pending code. Returns the closed code, or None if none was pending.

    A pending code already past its expiry is closed as expired instead.
    """
    now = now or utcnow()
    pending = activation_store.get_pending_for_kiosk(db, kiosk_id)
    if pending is None:
        return None

    event_ids = _close_pending_for_kiosk(db, kiosk_id, now, _user_actor(user_id))
    if not event_ids:
        db.rollback()
        return None
    log_activity(
        db,
        "info",
        "pairing",
        f"Revoked activation code for {kiosk_id}",
        kiosk_id=kiosk_id,
        user_id=user_id,
        commit=False,
    )
    db.commit()
    outbox.dispatch(db, event_ids)
    db.refresh(pending)
    return pending


def reconcile(db: Session, now: datetime | None = None) -> int:
    """Re-emit pairing events that never reached a subscriber."""
    return outbox.reconcile(db, now=now)


def get_kiosk(db: Session, kiosk_id: str) -> Kiosk | None:
    return db.query(Kiosk).filter(Kiosk.kiosk_id == kiosk_id).first()


def list_kiosks(db: Session, status: str | None = None, limit: int = 100) -> list[Kiosk]:
    query = db.query(Kiosk)
    if status is not None:
        query = query.filter(Kiosk.status == status)
    return query.order_by(Kiosk.activated_at.desc()).limit(limit).all()


def list_codes(db: Session, state: str | None = None, limit: int = 50) -> list[ActivationCode]:
    return activation_store.list_codes(db, state=state, limit=limit)


def get_kiosk_status(
    db: Session, kiosk_id: str, now: datetime | None = None
) -> KioskPairingStatus:
    """Current activation state of a kiosk id, as the admin poll sees it.

    Raises:
        NotFoundError: If the kiosk id has neither a kiosk record nor any code.
    """
    now = now or utcnow()
    kiosk = get_kiosk(db, kiosk_id)
    latest = activation_store.get_latest_for_kiosk(db, kiosk_id)
    if kiosk is None and latest is None:
        raise NotFoundError("Kiosk not found")

    # A newer code issued for an active kiosk (replacement device) describes
    # the pairing the admin is waiting on, so it decides the state
    current_pairing = (
        kiosk is not None
        and kiosk.status == KioskStatus.ACTIVE.value
        and (latest is None or latest.code == kiosk.activation_code)
    )
    if current_pairing:
        state = "active"
    elif latest is not None and latest.state == CodeState.PENDING.value:
        state = "expired" if now >= latest.expires_at else "pending"
    elif latest is not None and latest.state != CodeState.REDEEMED.value:
        state = latest.state
    elif kiosk is not None and kiosk.status == KioskStatus.ACTIVE.value:
        state = "active"
    else:
        state = KioskStatus.INACTIVE.value

    return KioskPairingStatus(
        kiosk_id=kiosk_id,
        state=state,
        code=latest.code if latest else None,
        expires_at=latest.expires_at if latest else None,
        activation_code=kiosk.activation_code if kiosk else None,
        activated_at=kiosk.activated_at if kiosk else None,
        last_seen_at=kiosk.last_seen_at if kiosk else None,
        name=kiosk.name if kiosk else (latest.kiosk_name if latest else None),
        location=kiosk.location if kiosk else (latest.location if latest else None),
        operational_status=kiosk.operational_status if kiosk else None,
    )


def check_in(
    db: Session, session_token: str, status: str, now: datetime | None = None
) -> Kiosk:
    """Record a kiosk heartbeat: last-seen time and operational status.

    Raises:
        NotFoundError: Unknown session token.
        ConflictError: The kiosk has been deactivated.
    """
    kiosk = db.query(Kiosk).filter(Kiosk.session_token == session_token).first()
    if kiosk is None:
        raise NotFoundError("Kiosk session not found")
    if kiosk.status != KioskStatus.ACTIVE.value:
        raise ConflictError("Kiosk is deactivated")

    kiosk.last_seen_at = now or utcnow()
    kiosk.operational_status = KioskOperationalStatus(status).value
    db.commit()
    db.refresh(kiosk)
    return kiosk


def deactivate_kiosk(db: Session, kiosk_id: str, user_id: int | None = None) -> Kiosk:
    """Unpair a kiosk: it stops being active and its session token stops working."""
    kiosk = get_kiosk(db, kiosk_id)
    if kiosk is None:
        raise NotFoundError("Kiosk not found")

    kiosk.status = KioskStatus.INACTIVE.value
    kiosk.operational_status = KioskOperationalStatus.OFFLINE.value
    kiosk.session_token = generate_session_token(get_settings().kiosk_session_token_bytes)
    log_activity(
        db,
        "info",
        "pairing",
        f"Kiosk {kiosk_id} deactivated",
        kiosk_id=kiosk_id,
        user_id=user_id,
        commit=False,
    )
    db.commit()
    db.refresh(kiosk)
    logger.info("Kiosk %s deactivated", kiosk_id)
    return kiosk
