"""
Parking session state machine tests.

Verifies:
- Entry opens exactly one ACTIVE session per payer
- Exit completes the session and writes its charge in the same transaction
- Token failures leave no state behind (tampering is audited)
- Unpriceable closes stay ACTIVE and land in the billing backlog
- process_scan picks the direction from the payer's state
"""

from datetime import timedelta

import pytest

from parktrack.errors import (
    ChargeComputationError,
    ConflictError,
    NotFoundError,
    TokenExpiredError,
    TokenMalformedError,
    TokenTamperedError,
    ValidationError,
)
from parktrack.models import ChargeRecord, ParkingSession
from parktrack.services import rate_service, session_service
from parktrack.services.ledger_service import list_billing_events
from parktrack.services.security_service import EVENT_TOKEN_TAMPERED, list_security_events

from conftest import LOT_ID, T0, at, issue_token


def enter(payer_id, vehicle_id, minutes=0, rate_type=None, agent_id="gate-1"):
    now = at(minutes)
    return session_service.open_session(
        issue_token(payer_id, vehicle_id, now), LOT_ID, agent_id, rate_type=rate_type, now=now
    )


def leave(payer_id, vehicle_id, minutes, agent_id="gate-2"):
    now = at(minutes)
    return session_service.close_session(issue_token(payer_id, vehicle_id, now), agent_id, now=now)


# =============================================================================
# ENTRY
# =============================================================================


class TestEntry:
    def test_entry_opens_active_session(self, db_session, normal_payer, normal_rate):
        session = enter("drv-normal", "NRM001")

        assert session.status == session_service.SESSION_STATUS_ACTIVE
        assert session.payer_id == "drv-normal"
        assert session.vehicle_id == "NRM001"
        assert session.lot_id == LOT_ID
        assert session.rate_type == "NORMAL"
        assert session.entry_at == T0
        assert session.entry_agent_id == "gate-1"
        assert session.exit_at is None
        assert session_service.get_active_session("drv-normal").id == session.id

    def test_entry_records_ledger_event(self, db_session, normal_payer, normal_rate):
        session = enter("drv-normal", "NRM001")
        events = list_billing_events(payer_id="drv-normal")
        assert [e.event_type for e in events] == ["session.opened"]
        assert events[0].session_id == session.id
        assert events[0].actor_id == "gate-1"

    def test_second_entry_conflicts(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        with pytest.raises(ConflictError):
            enter("drv-normal", "NRM001", minutes=1)
        assert db_session.query(ParkingSession).filter_by(payer_id="drv-normal").count() == 1

    def test_entry_after_exit_is_allowed(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        leave("drv-normal", "NRM001", 30)
        session = enter("drv-normal", "NRM001", minutes=45)
        assert session.status == "ACTIVE"

    def test_rate_type_is_normalized(self, db_session, normal_payer, normal_rate):
        session = enter("drv-normal", "NRM001", rate_type=" vip ")
        assert session.rate_type == "VIP"

    def test_unknown_rate_type_rejected(self, db_session, normal_payer, normal_rate):
        with pytest.raises(ValidationError):
            enter("drv-normal", "NRM001", rate_type="WEEKEND")

    def test_agent_required(self, db_session, normal_payer, normal_rate):
        with pytest.raises(ValidationError):
            enter("drv-normal", "NRM001", agent_id="  ")

    def test_unknown_lot(self, db_session, normal_payer, normal_rate):
        with pytest.raises(NotFoundError):
            session_service.open_session(issue_token("drv-normal", "NRM001", T0), "LOT-Z", "gate-1", now=T0)

    def test_unknown_payer(self, db_session, lot):
        with pytest.raises(NotFoundError):
            enter("drv-ghost", "NRM001")

    def test_vehicle_must_belong_to_payer(self, db_session, normal_payer, gold_payer, normal_rate):
        with pytest.raises(ValidationError):
            enter("drv-normal", "GLD001")
        assert session_service.get_active_session("drv-normal") is None


# =============================================================================
# TOKEN FAILURES
# =============================================================================


class TestTokenFailures:
    def test_expired_token_opens_nothing(self, db_session, normal_payer, normal_rate):
        token = issue_token("drv-normal", "NRM001", T0)
        with pytest.raises(TokenExpiredError):
            session_service.open_session(token, LOT_ID, "gate-1", now=T0 + timedelta(seconds=31))
        assert session_service.get_active_session("drv-normal") is None

    def test_malformed_token(self, db_session, normal_payer, normal_rate):
        with pytest.raises(TokenMalformedError):
            session_service.open_session("PARKTRACK|drv-normal", LOT_ID, "gate-1", now=T0)

    def test_tampered_token_is_audited(self, db_session, normal_payer, normal_rate):
        forged = issue_token("drv-normal", "NRM001", T0).replace("NRM001", "NRM002")

        with pytest.raises(TokenTamperedError):
            session_service.open_session(forged, LOT_ID, "gate-1", now=T0)

        assert session_service.get_active_session("drv-normal") is None
        events = list_security_events(event_type=EVENT_TOKEN_TAMPERED)
        assert len(events) == 1
        assert events[0].success is False
        assert events[0].payer_id == "drv-normal"
        assert events[0].vehicle_id == "NRM002"
        assert events[0].agent_id == "gate-1"
        assert events[0].lot_id == LOT_ID

    def test_tampered_exit_leaves_session_open(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        forged = issue_token("drv-normal", "NRM001", at(60)).replace("drv-normal", "drv-normaX")
        with pytest.raises(TokenTamperedError):
            session_service.close_session(forged, "gate-2", now=at(60))
        assert session_service.get_active_session("drv-normal") is not None


# =============================================================================
# EXIT
# =============================================================================


class TestExit:
    def test_exit_completes_and_charges(self, db_session, normal_payer, normal_rate):
        opened = enter("drv-normal", "NRM001")
        session, charge = leave("drv-normal", "NRM001", 90)

        assert session.id == opened.id
        assert session.status == session_service.SESSION_STATUS_COMPLETED
        assert session.exit_at == at(90)
        assert session.duration_minutes == 90
        assert session.exit_agent_id == "gate-2"

        assert charge.session_id == session.id
        assert charge.amount_cents == 2000
        assert charge.tier == "NORMAL"
        assert charge.rate_policy_id == normal_rate.id
        assert charge.is_paid is False
        assert charge.created_at == at(90)
        assert session_service.get_active_session("drv-normal") is None

    def test_gold_tier_first_hour_free(self, db_session, gold_payer, normal_rate):
        enter("drv-gold", "GLD001")
        _, charge = leave("drv-gold", "GLD001", 90)
        assert charge.amount_cents == 400

    def test_platinum_short_stay_is_free(self, db_session, platinum_payer, normal_rate):
        enter("drv-platinum", "PLT001")
        _, charge = leave("drv-platinum", "PLT001", 45)
        assert charge.amount_cents == 0

    def test_long_stay_capped(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        _, charge = leave("drv-normal", "NRM001", 600)
        assert charge.amount_cents == 5000
        assert charge.was_capped is True

    def test_seconds_are_truncated(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        session, charge = leave("drv-normal", "NRM001", 60.9)
        assert session.duration_minutes == 60
        assert charge.amount_cents == 1000

    def test_exit_clock_behind_entry(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        session, charge = leave("drv-normal", "NRM001", -0.2)
        assert session.exit_at == session.entry_at
        assert session.duration_minutes == 0
        assert charge.amount_cents == 0

    def test_replayed_exit_not_found(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        token = issue_token("drv-normal", "NRM001", at(30))
        session_service.close_session(token, "gate-2", now=at(30))

        with pytest.raises(NotFoundError):
            session_service.close_session(token, "gate-2", now=at(30) + timedelta(seconds=5))
        assert db_session.query(ChargeRecord).count() == 1

    def test_exit_without_entry(self, db_session, normal_payer, normal_rate):
        with pytest.raises(NotFoundError):
            leave("drv-normal", "NRM001", 10)

    def test_exit_writes_ledger_events(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        _, charge = leave("drv-normal", "NRM001", 90)

        types = {e.event_type for e in list_billing_events(payer_id="drv-normal")}
        assert {"session.opened", "session.completed", "charge.created"} <= types
        created = list_billing_events(entity_type="charge", entity_id=charge.id)
        assert '"amount_cents": 2000' in created[0].payload

    def test_charge_is_snapshot_of_policy(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        _, charge = leave("drv-normal", "NRM001", 90)

        rate_service.set_rate_policy(LOT_ID, "NORMAL", 3000, 9000)

        refreshed = db_session.get(ChargeRecord, charge.id)
        assert refreshed.amount_cents == 2000
        assert refreshed.rate_policy_id == normal_rate.id

    def test_price_change_applies_to_next_close(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        rate_service.set_rate_policy(LOT_ID, "NORMAL", 3000, 9000)
        _, charge = leave("drv-normal", "NRM001", 30)
        assert charge.amount_cents == 3000


# =============================================================================
# BILLING BACKLOG
# =============================================================================


class TestBillingBacklog:
    def test_unpriceable_close_stays_active(self, db_session, normal_payer, normal_rate):
        opened = enter("drv-normal", "NRM001", rate_type="VIP")

        with pytest.raises(ChargeComputationError):
            leave("drv-normal", "NRM001", 60)

        active = session_service.get_active_session("drv-normal")
        assert active is not None
        assert active.id == opened.id
        assert active.exit_at is None
        assert db_session.query(ChargeRecord).count() == 0

        backlog = session_service.list_backlog_items()
        assert len(backlog) == 1
        assert backlog[0].session_id == opened.id
        assert backlog[0].rate_type == "VIP"
        assert backlog[0].status == session_service.BACKLOG_STATUS_OPEN
        assert "VIP" in backlog[0].reason

    def test_failure_is_logged(self, db_session, normal_payer, normal_rate, caplog):
        enter("drv-normal", "NRM001", rate_type="VIP")
        with caplog.at_level("ERROR", logger="parktrack.services.session_service"):
            with pytest.raises(ChargeComputationError):
                leave("drv-normal", "NRM001", 60)
        assert "Charge computation failed" in caplog.text

    def test_later_close_resolves_backlog(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001", rate_type="VIP")
        with pytest.raises(ChargeComputationError):
            leave("drv-normal", "NRM001", 60)

        rate_service.set_rate_policy(LOT_ID, "VIP", 1000, 5000)
        session, charge = leave("drv-normal", "NRM001", 120)

        assert session.status == "COMPLETED"
        assert charge.amount_cents == 3000
        assert session_service.list_backlog_items() == []
        resolved = session_service.list_backlog_items(status=session_service.BACKLOG_STATUS_RESOLVED)
        assert len(resolved) == 1
        assert resolved[0].resolved_at == at(120)

    def test_deactivated_policy_fails_close(self, db_session, normal_payer, normal_rate):
        enter("drv-normal", "NRM001")
        rate_service.deactivate_rate_policy(normal_rate.id)
        with pytest.raises(ChargeComputationError):
            leave("drv-normal", "NRM001", 30)
        assert len(session_service.list_backlog_items()) == 1


# =============================================================================
# PROCESS SCAN
# =============================================================================


class TestProcessScan:
    def test_first_scan_enters_second_exits(self, db_session, normal_payer, normal_rate):
        first = session_service.process_scan(issue_token("drv-normal", "NRM001", T0), LOT_ID, "gate-1", now=T0)
        assert first.action == session_service.SCAN_ACTION_ENTRY
        assert first.charge is None

        later = at(61)
        second = session_service.process_scan(issue_token("drv-normal", "NRM001", later), LOT_ID, "gate-1", now=later)
        assert second.action == session_service.SCAN_ACTION_EXIT
        assert second.session.id == first.session.id
        assert second.charge.amount_cents == 2000

        payload = second.to_dict()
        assert payload["action"] == "EXIT"
        assert payload["charge"]["amount_cents"] == 2000

    def test_scan_with_expired_token(self, db_session, normal_payer, normal_rate):
        with pytest.raises(TokenExpiredError):
            session_service.process_scan(issue_token("drv-normal", "NRM001", T0), LOT_ID, "gate-1", now=at(2))


# =============================================================================
# QUERIES
# =============================================================================


class TestQueries:
    def test_active_sessions_by_lot(self, db_session, normal_payer, gold_payer, normal_rate):
        enter("drv-normal", "NRM001")
        enter("drv-gold", "GLD001", minutes=5)

        active = session_service.list_active_sessions(lot_id=LOT_ID)
        assert [s.payer_id for s in active] == ["drv-normal", "drv-gold"]
        assert session_service.list_active_sessions(lot_id="LOT-Z") == []

    def test_payer_history_newest_first(self, db_session, normal_payer, normal_rate):
        first = enter("drv-normal", "NRM001")
        leave("drv-normal", "NRM001", 10)
        second = enter("drv-normal", "NRM001", minutes=20)

        history = session_service.get_payer_sessions("drv-normal")
        assert [s.id for s in history] == [second.id, first.id]
        assert session_service.get_session(first.id).charge.amount_cents == 1000
