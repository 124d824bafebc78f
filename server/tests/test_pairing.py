"""Tests for the pairing service: issuance, redemption, expiry and revocation."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kiosk_pairing.core.errors import (
    ConflictError,
    ExpiredError,
    GenerationExhausted,
    InvalidArgument,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from kiosk_pairing.models.activation_code import ActivationCode
from kiosk_pairing.models.activity_log import ActivityLog
from kiosk_pairing.models.kiosk import Kiosk
from kiosk_pairing.models.pairing_outbox import PairingOutbox
from kiosk_pairing.services import activation_store, outbox, pairing
from kiosk_pairing.services.event_bus import EventBus

T0 = datetime(2026, 3, 1, 12, 0, 0)


def _events(db: Session, kiosk_id: str | None = None) -> list[tuple[str, str]]:
    query = db.query(PairingOutbox)
    if kiosk_id is not None:
        query = query.filter(PairingOutbox.kiosk_id == kiosk_id)
    return [(row.event_type, row.code) for row in query.order_by(PairingOutbox.id)]


class TestIssueCode:
    def test_issues_pending_code(self, db: Session, use_codes):
        use_codes("ABCD2345")
        record = pairing.issue_code(db, kiosk_id="lobby-1", kiosk_name="Lobby", now=T0)
        assert record.code == "ABCD2345"
        assert record.kiosk_id == "lobby-1"
        assert record.state == "pending"
        assert record.expires_at == T0 + timedelta(minutes=10)
        assert record.kiosk_name == "Lobby"

    def test_generates_kiosk_id_when_missing(self, db: Session):
        record = pairing.issue_code(db, now=T0)
        assert record.kiosk_id.startswith("kiosk-")

    def test_rejects_malformed_kiosk_id(self, db: Session):
        with pytest.raises(InvalidArgument):
            pairing.issue_code(db, kiosk_id="not a valid id!", now=T0)

    def test_reissue_revokes_previous_pending_code(self, db: Session, use_codes):
        use_codes("ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0 + timedelta(minutes=1))

        states = {c.code: c.state for c in db.query(ActivationCode)}
        assert states == {"ABCD2345": "revoked", "EFGH2345": "pending"}
        assert _events(db) == [("revoked", "ABCD2345")]

    def test_reissue_after_expiry_marks_old_code_expired(self, db: Session, use_codes):
        use_codes("ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0 + timedelta(minutes=15))

        assert activation_store.get_by_code(db, "ABCD2345").state == "expired"
        assert _events(db) == [("expired", "ABCD2345")]

    def test_retries_on_code_collision(self, db: Session, use_codes):
        use_codes("ABCD2345", "ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="k1", now=T0)
        record = pairing.issue_code(db, kiosk_id="k2", now=T0)
        assert record.code == "EFGH2345"

    def test_concurrent_issuance_for_same_kiosk_leaves_one_pending(
        self, db: Session, use_codes, monkeypatch
    ):
        use_codes("ABCD2345", "EFGH2345", "IJKL2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)

        # First attempt behaves like a racing issuer that did not see the pending code
        real_close = pairing._close_pending_for_kiosk
        calls = []

        def racing_close(db_, kiosk_id, now, actor):
            calls.append(kiosk_id)
            if len(calls) == 1:
                return []
            return real_close(db_, kiosk_id, now, actor)

        monkeypatch.setattr(pairing, "_close_pending_for_kiosk", racing_close)
        record = pairing.issue_code(db, kiosk_id="lobby-1", now=T0 + timedelta(minutes=1))

        assert len(calls) == 2
        assert record.code == "IJKL2345"
        pending = db.query(ActivationCode).filter(ActivationCode.state == "pending").all()
        assert [c.code for c in pending] == ["IJKL2345"]

    def test_generation_exhausted(self, db: Session, use_codes):
        use_codes(*(["ABCD2345"] * 6))
        pairing.issue_code(db, kiosk_id="k1", now=T0)

        with pytest.raises(GenerationExhausted):
            pairing.issue_code(db, kiosk_id="k2", now=T0)

        entry = db.query(ActivityLog).filter(ActivityLog.level == "error").one()
        assert "exhausted" in entry.message
        assert activation_store.get_pending_for_kiosk(db, "k2") is None

    def test_issue_is_audited(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        entry = db.query(ActivityLog).one()
        assert entry.source == "pairing"
        assert entry.kiosk_id == "lobby-1"


class TestRedeem:
    def test_second_device_conflicts(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)

        result = pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=2))
        assert result.kiosk_id == "lobby-1"
        assert result.replayed is False
        assert result.session_token

        with pytest.raises(ConflictError):
            pairing.redeem(db, "ABCD2345", "F2", now=T0 + timedelta(minutes=3))

    def test_round_trip_persists_kiosk(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", kiosk_name="Lobby", location="Hall A", now=T0)
        result = pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=1))

        kiosk = db.query(Kiosk).filter(Kiosk.kiosk_id == "lobby-1").one()
        assert kiosk.status == "active"
        assert kiosk.name == "Lobby"
        assert kiosk.location == "Hall A"
        assert kiosk.device_fingerprint == "F1"
        assert kiosk.session_token == result.session_token
        assert kiosk.activation_code == "ABCD2345"

        record = activation_store.get_by_code(db, "ABCD2345")
        assert record.state == "redeemed"
        assert record.redeemed_by_fingerprint == "F1"
        assert _events(db) == [("activated", "ABCD2345")]

    def test_default_kiosk_name(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        result = pairing.redeem(db, "ABCD2345", "F1", now=T0)
        assert result.name == "Kiosk lobby-1"

    def test_same_device_retry_is_idempotent(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        first = pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=1))
        second = pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=2))

        assert second.replayed is True
        assert second.session_token == first.session_token
        assert second.redeemed_at == first.redeemed_at
        # Exactly one activated event
        assert _events(db) == [("activated", "ABCD2345")]

    def test_old_code_replay_fails_after_repairing(self, db: Session, use_codes):
        use_codes("ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.redeem(db, "ABCD2345", "F1", now=T0)
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0 + timedelta(minutes=1))
        pairing.redeem(db, "EFGH2345", "F9", now=T0 + timedelta(minutes=2))

        with pytest.raises(ConflictError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=3))

    def test_expired_code(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)

        with pytest.raises(ExpiredError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=11))

        assert activation_store.get_by_code(db, "ABCD2345").state == "expired"
        assert _events(db) == [("expired", "ABCD2345")]
        assert db.query(Kiosk).count() == 0

        # Still expired (not not-found) on a second try
        with pytest.raises(ExpiredError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=12))
        assert _events(db) == [("expired", "ABCD2345")]

    def test_redeem_exactly_at_expiry_is_expired(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        with pytest.raises(ExpiredError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=10))

    def test_superseded_code_conflicts(self, db: Session, use_codes):
        use_codes("ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0 + timedelta(minutes=1))

        with pytest.raises(ConflictError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=2))

        result = pairing.redeem(db, "EFGH2345", "F1", now=T0 + timedelta(minutes=2))
        assert result.kiosk_id == "lobby-1"

    def test_normalizes_typed_code(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        result = pairing.redeem(db, " abcd-2345 ", "F1", now=T0)
        assert result.code == "ABCD2345"

    def test_unknown_code(self, db: Session):
        with pytest.raises(NotFoundError):
            pairing.redeem(db, "ZZZZ2345", "F1", now=T0)

    def test_malformed_code_is_not_found(self, db: Session):
        with pytest.raises(NotFoundError):
            pairing.redeem(db, "ABC123", "F1", now=T0)

    @pytest.mark.parametrize("code,fingerprint", [("", "F1"), ("  ", "F1"), ("ABCD2345", " ")])
    def test_blank_input_is_validation_error(self, db: Session, code, fingerprint):
        with pytest.raises(ValidationError):
            pairing.redeem(db, code, fingerprint, now=T0)

    def test_transient_store_failure_is_retried(self, db: Session, use_codes, monkeypatch):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)

        real_get = activation_store.get_by_code
        calls = []

        def flaky_get(db_, code):
            calls.append(code)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return real_get(db_, code)

        monkeypatch.setattr(activation_store, "get_by_code", flaky_get)
        result = pairing.redeem(db, "ABCD2345", "F1", now=T0)
        assert result.kiosk_id == "lobby-1"
        assert len(calls) == 2

    def test_persistent_store_failure_is_transient_error(self, db: Session, monkeypatch):
        def broken_get(db_, code):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(activation_store, "get_by_code", broken_get)
        with pytest.raises(TransientStoreError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0)


class TestExpireSweep:
    def test_expires_overdue_codes(self, db: Session, use_codes):
        use_codes("ABCD2345", "EFGH2345")
        pairing.issue_code(db, kiosk_id="k1", now=T0)
        pairing.issue_code(db, kiosk_id="k2", now=T0 + timedelta(minutes=5))

        expired = pairing.expire_sweep(db, now=T0 + timedelta(minutes=12))
        assert expired == 1
        assert activation_store.get_by_code(db, "ABCD2345").state == "expired"
        assert activation_store.get_by_code(db, "EFGH2345").state == "pending"
        assert _events(db) == [("expired", "ABCD2345")]

    def test_second_sweep_is_noop(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="k1", now=T0)
        assert pairing.expire_sweep(db, now=T0 + timedelta(minutes=12)) == 1
        assert pairing.expire_sweep(db, now=T0 + timedelta(minutes=13)) == 0

    def test_stale_sweeper_loses_race(self, db: Session, use_codes, monkeypatch):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="k1", now=T0)
        later = T0 + timedelta(minutes=12)
        stale = activation_store.find_expired_pending(db, later)

        assert pairing.expire_sweep(db, now=later) == 1

        # A second sweeper read the same row before the first one committed
        monkeypatch.setattr(activation_store, "find_expired_pending", lambda db_, now: stale)
        assert pairing.expire_sweep(db, now=later) == 0
        assert _events(db) == [("expired", "ABCD2345")]

    def test_sweep_does_not_touch_redeemed_codes(self, db: Session, paired_kiosk):
        assert pairing.expire_sweep(db, now=T0 + timedelta(hours=1)) == 0
        assert activation_store.get_by_code(db, "PAIR2345").state == "redeemed"


class TestRevoke:
    def test_revokes_pending_code(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        record = pairing.revoke(db, "lobby-1", now=T0 + timedelta(minutes=1))
        assert record.code == "ABCD2345"
        assert record.state == "revoked"
        assert _events(db) == [("revoked", "ABCD2345")]

        with pytest.raises(ConflictError):
            pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=2))

    def test_nothing_pending(self, db: Session):
        assert pairing.revoke(db, "lobby-1", now=T0) is None


class TestReconcile:
    def test_undelivered_event_is_redelivered(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.redeem(db, "ABCD2345", "F1", now=T0 + timedelta(minutes=1))

        # Nobody was subscribed: the event is stored but not delivered
        row = db.query(PairingOutbox).one()
        assert row.delivered_at is None
        assert row.attempts == 1

        bus = EventBus()
        queue = bus.subscribe(outbox.KIOSKS_TOPIC)
        assert outbox.reconcile(db, bus=bus, now=T0 + timedelta(minutes=2)) == 1

        message = queue.get_nowait()
        assert message["event"] == "activated"
        assert message["id"] == row.id
        assert message["data"]["kiosk_id"] == "lobby-1"
        assert message["data"]["code"] == "ABCD2345"

        db.refresh(row)
        assert row.delivered_at == T0 + timedelta(minutes=2)
        assert outbox.reconcile(db, bus=bus) == 0


class TestKioskStatus:
    def test_unknown_kiosk(self, db: Session):
        with pytest.raises(NotFoundError):
            pairing.get_kiosk_status(db, "nope")

    def test_pending_then_expired_on_read(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        assert pairing.get_kiosk_status(db, "lobby-1", now=T0).state == "pending"
        late = pairing.get_kiosk_status(db, "lobby-1", now=T0 + timedelta(minutes=11))
        assert late.state == "expired"
        assert late.code == "ABCD2345"

    def test_active_after_redeem(self, db: Session, paired_kiosk):
        status = pairing.get_kiosk_status(db, paired_kiosk, now=T0)
        assert status.state == "active"
        assert status.activated_at == T0
        assert status.name == "Lobby"

    def test_repairing_active_kiosk_reports_new_code(self, db: Session, paired_kiosk, use_codes):
        use_codes("NEWW2345")
        pairing.issue_code(db, kiosk_id=paired_kiosk, now=T0 + timedelta(minutes=1))

        status = pairing.get_kiosk_status(db, paired_kiosk, now=T0 + timedelta(minutes=2))
        assert status.state == "pending"
        assert status.code == "NEWW2345"
        assert status.activation_code == "PAIR2345"

        late = pairing.get_kiosk_status(db, paired_kiosk, now=T0 + timedelta(minutes=12))
        assert late.state == "expired"

    def test_active_again_once_new_code_is_redeemed(
        self, db: Session, paired_kiosk, use_codes
    ):
        use_codes("NEWW2345")
        pairing.issue_code(db, kiosk_id=paired_kiosk, now=T0 + timedelta(minutes=1))
        pairing.redeem(db, "NEWW2345", "F2", now=T0 + timedelta(minutes=2))

        status = pairing.get_kiosk_status(db, paired_kiosk, now=T0 + timedelta(minutes=3))
        assert status.state == "active"
        assert status.activation_code == "NEWW2345"

    def test_revoked(self, db: Session, use_codes):
        use_codes("ABCD2345")
        pairing.issue_code(db, kiosk_id="lobby-1", now=T0)
        pairing.revoke(db, "lobby-1", now=T0)
        assert pairing.get_kiosk_status(db, "lobby-1", now=T0).state == "revoked"

    def test_inactive_after_deactivate(self, db: Session, paired_kiosk):
        pairing.deactivate_kiosk(db, paired_kiosk)
        assert pairing.get_kiosk_status(db, paired_kiosk, now=T0).state == "inactive"


class TestCheckIn:
    def test_updates_last_seen_and_status(self, db: Session, paired_kiosk):
        token = pairing.get_kiosk(db, paired_kiosk).session_token
        kiosk = pairing.check_in(db, token, "busy", now=T0 + timedelta(minutes=5))
        assert kiosk.last_seen_at == T0 + timedelta(minutes=5)
        assert kiosk.operational_status == "busy"

    def test_unknown_token(self, db: Session):
        with pytest.raises(NotFoundError):
            pairing.check_in(db, "nope", "available")

    def test_deactivated_kiosk_token_stops_working(self, db: Session, paired_kiosk):
        token = pairing.get_kiosk(db, paired_kiosk).session_token
        kiosk = pairing.deactivate_kiosk(db, paired_kiosk)
        assert kiosk.status == "inactive"
        assert kiosk.session_token != token
        with pytest.raises(NotFoundError):
            pairing.check_in(db, token, "available")

    def test_replay_after_deactivation_conflicts(self, db: Session, paired_kiosk):
        pairing.deactivate_kiosk(db, paired_kiosk)
        with pytest.raises(ConflictError):
            pairing.redeem(db, "PAIR2345", "F1", now=T0 + timedelta(minutes=1))
