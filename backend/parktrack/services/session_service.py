# Overview: Service-layer operations for parking sessions; the entry/exit state machine.

"""
Parking Session State Machine

WHY: A session is the authoritative record of one vehicle's stay. Gate
scans open and close it; closing it produces the charge that billing rolls
up into invoices.

LIFECYCLE:
    (none) --entry scan--> ACTIVE --exit scan--> COMPLETED (terminal)

DESIGN PRINCIPLES:
- Tokens are verified before any state is read or written.
- One ACTIVE session per payer, enforced by a partial unique index. A lost
  insert race surfaces as ConflictError, same as a plain duplicate entry.
- Close and charge are one transaction: a COMPLETED session always has
  exactly one ChargeRecord.
- A close that cannot be priced is rolled back. The session stays ACTIVE and
  the failure is queued in the billing backlog for an administrator.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ChargeComputationError,
    ConflictError,
    NotFoundError,
    TokenTamperedError,
    ValidationError,
)
from ..models import BillingBacklogItem, ChargeRecord, ParkingSession
from parktrack.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_billing_event
from .security_service import EVENT_TOKEN_TAMPERED, log_security_event
from .token_service import Token, decode_token, verify_token
from . import charge_calculator, rate_service, registry_service


logger = logging.getLogger(__name__)


# =============================================================================
# SESSION STATUS (CONSTANTS)
# =============================================================================

SESSION_STATUS_ACTIVE = "ACTIVE"
SESSION_STATUS_COMPLETED = "COMPLETED"

SCAN_ACTION_ENTRY = "ENTRY"
SCAN_ACTION_EXIT = "EXIT"

BACKLOG_STATUS_OPEN = "OPEN"
BACKLOG_STATUS_RESOLVED = "RESOLVED"

# Gates hit the same rows in bursts; give lock contention a few more tries
SESSION_RETRY_ATTEMPTS = 5


@dataclass
class ScanResult:
    """Outcome of a gate scan: what happened and the rows it touched."""
    action: str
    session: ParkingSession
    charge: ChargeRecord | None = None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "session": self.session.to_dict(),
            "charge": self.charge.to_dict() if self.charge else None,
        }


# =============================================================================
# TOKEN GATE
# =============================================================================

def _verify_scan_token(
    token_string: str,
    now: datetime,
    *,
    agent_id: str | None = None,
    lot_id: str | None = None,
    ip_address: str | None = None,
) -> Token:
    """
    verify_token plus the security trail: a tampered token is recorded with
    whatever identity it claimed before the error propagates.
    """
    try:
        return verify_token(token_string, now)
    except TokenTamperedError as exc:
        claimed = decode_token(token_string)
        log_security_event(
            EVENT_TOKEN_TAMPERED,
            success=False,
            payer_id=claimed.payer_id,
            vehicle_id=claimed.vehicle_id,
            agent_id=agent_id,
            lot_id=lot_id,
            reason=str(exc),
            ip_address=ip_address,
        )
        raise


def _require_agent(agent_id: str | None) -> str:
    if not agent_id or not str(agent_id).strip():
        raise ValidationError("agent_id required")
    return str(agent_id).strip()


# =============================================================================
# ENTRY
# =============================================================================

def _open_verified(token: Token, lot_id: str, agent_id: str, rate_type: str, now: datetime) -> ParkingSession:
    payer = registry_service.get_payer(token.payer_id)
    if not payer or not payer.is_active:
        raise NotFoundError(f"Payer {token.payer_id} not found")

    vehicle = registry_service.get_vehicle(token.vehicle_id)
    if not vehicle or not vehicle.is_active:
        raise NotFoundError(f"Vehicle {token.vehicle_id} not found")
    if vehicle.payer_id != payer.id:
        raise ValidationError(f"Vehicle {vehicle.id} is not registered to payer {payer.id}")

    registry_service.require_lot(lot_id)

    def _op():
        existing = db.session.query(ParkingSession).filter_by(
            payer_id=payer.id,
            status=SESSION_STATUS_ACTIVE,
        ).first()
        if existing:
            raise ConflictError(f"Payer {payer.id} already has an active session ({existing.id})")

        session = ParkingSession(
            payer_id=payer.id,
            vehicle_id=vehicle.id,
            lot_id=lot_id,
            rate_type=rate_type,
            status=SESSION_STATUS_ACTIVE,
            entry_at=now,
            entry_agent_id=agent_id,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # Another gate opened a session for this payer between our read and insert
            db.session.rollback()
            raise ConflictError(f"Payer {payer.id} already has an active session")

        append_billing_event(
            event_type="session.opened",
            entity_type="parking_session",
            entity_id=session.id,
            payer_id=payer.id,
            session_id=session.id,
            actor_id=agent_id,
            occurred_at=now,
            note=f"lot={lot_id} vehicle={vehicle.id} rate_type={rate_type}",
        )

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Payer {payer.id} already has an active session")
        return session

    return run_with_retry(_op, attempts=SESSION_RETRY_ATTEMPTS)


def open_session(
    token_string: str,
    lot_id: str,
    agent_id: str,
    rate_type: str | None = None,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> ParkingSession:
    """
    Open a session from an entry scan.

    Args:
        token_string: scanned gate token
        lot_id: lot the gate belongs to
        agent_id: gate agent who scanned
        rate_type: NORMAL (default), VIP, HOURLY, OVERNIGHT
        now: scan time (defaults to server time)

    Returns:
        The new ACTIVE session

    Raises:
        TokenMalformedError, TokenTamperedError, TokenExpiredError
        ValidationError: bad agent/rate-type, vehicle not owned by payer
        NotFoundError: unknown payer, vehicle or lot
        ConflictError: payer already has an ACTIVE session
    """
    now = now or utcnow()
    agent_id = _require_agent(agent_id)
    rate_type = rate_service.normalize_rate_type(rate_type)
    token = _verify_scan_token(token_string, now, agent_id=agent_id, lot_id=lot_id, ip_address=ip_address)
    return _open_verified(token, lot_id, agent_id, rate_type, now)


# =============================================================================
# EXIT
# =============================================================================

def _duration_minutes(entry_at: datetime, exit_at: datetime) -> int:
    seconds = (exit_at - entry_at).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def _price_session(session: ParkingSession, tier: str) -> ChargeRecord:
    """Build the ChargeRecord for a session being closed. Caller commits."""
    try:
        policy = rate_service.lookup_rate_policy(session.lot_id, session.rate_type)
    except NotFoundError as exc:
        raise ChargeComputationError(str(exc)) from exc

    breakdown = charge_calculator.calculate_breakdown(
        session.duration_minutes,
        tier,
        policy,
        **charge_calculator.pricing_options_from_config(),
    )

    charge = ChargeRecord(
        session_id=session.id,
        payer_id=session.payer_id,
        lot_id=session.lot_id,
        rate_policy_id=policy.id,
        rate_type=session.rate_type,
        tier=tier,
        duration_minutes=session.duration_minutes,
        billable_hours=breakdown.billable_hours,
        hourly_rate_cents=breakdown.hourly_rate_cents,
        was_capped=breakdown.was_capped,
        amount_cents=charge_calculator.to_cents(breakdown.amount_cents),
        discount_cents=0,
        is_paid=False,
        is_overdue=False,
        overdue_days=0,
        overdue_surcharge_cents=0,
        created_at=session.exit_at,
    )
    db.session.add(charge)
    db.session.flush()
    return charge


def _close_verified(token: Token, agent_id: str, now: datetime) -> tuple[ParkingSession, ChargeRecord]:
    # Filled inside the transaction so a pricing failure can be escalated
    # after the rollback has expired the ORM objects.
    pending: dict = {}

    def _op():
        pending.clear()
        session = lock_for_update(
            db.session.query(ParkingSession).filter_by(
                payer_id=token.payer_id,
                status=SESSION_STATUS_ACTIVE,
            )
        ).first()
        if not session:
            raise NotFoundError(f"No active session for payer {token.payer_id}")

        # Scan clock may trail the entry clock slightly
        exit_at = max(now, session.entry_at)
        session.exit_at = exit_at
        session.duration_minutes = _duration_minutes(session.entry_at, exit_at)
        session.status = SESSION_STATUS_COMPLETED
        session.exit_agent_id = agent_id

        pending.update(
            session_id=session.id,
            payer_id=session.payer_id,
            lot_id=session.lot_id,
            rate_type=session.rate_type,
        )

        tier = registry_service.get_payer_tier(session.payer_id)
        charge = _price_session(session, tier)

        append_billing_event(
            event_type="session.completed",
            entity_type="parking_session",
            entity_id=session.id,
            payer_id=session.payer_id,
            session_id=session.id,
            actor_id=agent_id,
            occurred_at=exit_at,
            note=f"duration_minutes={session.duration_minutes}",
        )
        append_billing_event(
            event_type="charge.created",
            entity_type="charge",
            entity_id=charge.id,
            payer_id=charge.payer_id,
            session_id=session.id,
            charge_id=charge.id,
            actor_id=agent_id,
            occurred_at=exit_at,
            payload=json.dumps({"amount_cents": charge.amount_cents, "tier": tier, "rate_type": charge.rate_type}),
        )

        _resolve_backlog_for_session(session.id, exit_at)

        db.session.commit()
        return session, charge

    try:
        return run_with_retry(_op, attempts=SESSION_RETRY_ATTEMPTS)
    except ChargeComputationError as exc:
        db.session.rollback()
        _escalate_to_backlog(pending, str(exc))
        raise


def close_session(
    token_string: str,
    agent_id: str,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> tuple[ParkingSession, ChargeRecord]:
    """
    Close the payer's ACTIVE session from an exit scan and price it.

    Returns:
        (completed session, its charge)

    Raises:
        TokenMalformedError, TokenTamperedError, TokenExpiredError
        NotFoundError: no ACTIVE session for the payer (incl. replayed exits)
        ChargeComputationError: session could not be priced; it stays ACTIVE
    """
    now = now or utcnow()
    agent_id = _require_agent(agent_id)
    token = _verify_scan_token(token_string, now, agent_id=agent_id, ip_address=ip_address)
    return _close_verified(token, agent_id, now)


def process_scan(
    token_string: str,
    lot_id: str,
    agent_id: str,
    rate_type: str | None = None,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> ScanResult:
    """
    Gate entry point: exit if the payer is parked, otherwise entry.

    rate_type only matters for entries.
    """
    now = now or utcnow()
    agent_id = _require_agent(agent_id)
    rate_type = rate_service.normalize_rate_type(rate_type)
    token = _verify_scan_token(token_string, now, agent_id=agent_id, lot_id=lot_id, ip_address=ip_address)

    if get_active_session(token.payer_id):
        session, charge = _close_verified(token, agent_id, now)
        return ScanResult(action=SCAN_ACTION_EXIT, session=session, charge=charge)

    session = _open_verified(token, lot_id, agent_id, rate_type, now)
    return ScanResult(action=SCAN_ACTION_ENTRY, session=session)


# =============================================================================
# BILLING BACKLOG
# =============================================================================

def _escalate_to_backlog(pending: dict, reason: str) -> BillingBacklogItem | None:
    """
    Record an unpriceable close in its own transaction.

    The close itself has already been rolled back; this row must survive it.
    """
    if not pending:
        return None

    item = BillingBacklogItem(
        session_id=pending["session_id"],
        payer_id=pending["payer_id"],
        lot_id=pending["lot_id"],
        rate_type=pending["rate_type"],
        reason=reason,
        status=BACKLOG_STATUS_OPEN,
        created_at=utcnow(),
    )
    db.session.add(item)
    db.session.commit()

    logger.error(
        "Charge computation failed for session %s (payer=%s lot=%s rate_type=%s): %s",
        pending["session_id"], pending["payer_id"], pending["lot_id"], pending["rate_type"], reason,
    )
    return item


def _resolve_backlog_for_session(session_id: int, resolved_at: datetime) -> None:
    items = db.session.query(BillingBacklogItem).filter_by(
        session_id=session_id,
        status=BACKLOG_STATUS_OPEN,
    ).all()
    for item in items:
        item.status = BACKLOG_STATUS_RESOLVED
        item.resolved_at = resolved_at


def list_backlog_items(status: str | None = BACKLOG_STATUS_OPEN) -> list[BillingBacklogItem]:
    query = db.session.query(BillingBacklogItem)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(BillingBacklogItem.created_at, BillingBacklogItem.id).all()


# =============================================================================
# QUERIES
# =============================================================================

def get_active_session(payer_id: str) -> ParkingSession | None:
    return db.session.query(ParkingSession).filter_by(
        payer_id=payer_id,
        status=SESSION_STATUS_ACTIVE,
    ).first()


def list_active_sessions(lot_id: str | None = None) -> list[ParkingSession]:
    query = db.session.query(ParkingSession).filter_by(status=SESSION_STATUS_ACTIVE)
    if lot_id:
        query = query.filter_by(lot_id=lot_id)
    return query.order_by(ParkingSession.entry_at).all()


def get_payer_sessions(payer_id: str, limit: int = 50) -> list[ParkingSession]:
    """Newest first."""
    return (
        db.session.query(ParkingSession)
        .filter_by(payer_id=payer_id)
        .order_by(ParkingSession.entry_at.desc(), ParkingSession.id.desc())
        .limit(limit)
        .all()
    )


def get_session(session_id: int) -> ParkingSession | None:
    return db.session.get(ParkingSession, session_id)
