# Overview: Service-layer operations for payment reconciliation and the overdue sweep.

"""
Payment Reconciliation Service

WHY: The engine never touches card or bank rails. Staff confirm money that
has arrived, and this module records it against invoices, single charges
or tier upgrade fees. It also ages unpaid charges into overdue with a daily
surcharge.

DESIGN PRINCIPLES:
- Money for an invoice goes through record_payment. Paying a single charge
  refreshes the invoice of its month.
- Every confirmation is an append-only PaymentConfirmation row plus a
  ledger event in the same transaction.
- An invoice that reaches PAID settles the charges it lists, so the sweep
  never surcharges money already received.
- Errors are reported to the caller, never retried as business logic.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from flask import current_app, has_app_context

from ..extensions import db
from ..errors import ConflictError, NotFoundError, PaymentError, ValidationError
from ..models import ChargeRecord, Invoice, ParkingSession, Payer, PaymentConfirmation, TierUpgradeRecord
from parktrack.time_utils import to_utc_z, utcnow, whole_days_between
from .charge_calculator import to_cents
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_billing_event
from . import invoice_service, registry_service


logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_CARD = "CARD"
PAYMENT_METHOD_BANK_TRANSFER = "BANK_TRANSFER"
PAYMENT_METHOD_ONLINE = "ONLINE"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_BANK_TRANSFER,
    PAYMENT_METHOD_ONLINE,
]

PAYMENT_TYPE_PARKING_CHARGE = "PARKING_CHARGE"
PAYMENT_TYPE_TIER_UPGRADE = "TIER_UPGRADE"

DEFAULT_OVERDUE_GRACE_DAYS = 7
DEFAULT_OVERDUE_DAILY_SURCHARGE_RATE = Decimal("0.05")


def _normalize_method(method: str | None) -> str:
    if method is not None and not isinstance(method, str):
        raise PaymentError(f"Invalid payment method: {method!r}")
    method = (method or "").strip().upper()
    if method not in VALID_PAYMENT_METHODS:
        raise PaymentError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
    return method


def _overdue_settings() -> tuple[int, Decimal]:
    if not has_app_context():
        return DEFAULT_OVERDUE_GRACE_DAYS, DEFAULT_OVERDUE_DAILY_SURCHARGE_RATE
    config = current_app.config
    return (
        int(config.get("OVERDUE_GRACE_DAYS", DEFAULT_OVERDUE_GRACE_DAYS)),
        Decimal(str(config.get("OVERDUE_DAILY_SURCHARGE_RATE", DEFAULT_OVERDUE_DAILY_SURCHARGE_RATE))),
    )


# =============================================================================
# INVOICE PAYMENTS
# =============================================================================

def record_payment(
    invoice_id: str,
    amount_cents: int,
    method: str,
    confirmed_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Record a confirmed payment against an invoice.

    Args:
        invoice_id: "{payer_id}_{YYYY-MM}"
        amount_cents: amount received, > 0
        method: CASH, CARD, BANK_TRANSFER, ONLINE
        confirmed_by: staff member who confirmed it

    Returns:
        The updated invoice

    Raises:
        NotFoundError: unknown invoice
        PaymentError: non-positive amount or unknown method
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise PaymentError("Payment amount must be a positive number of cents")
    method = _normalize_method(method)

    def _op():
        current = now or utcnow()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        confirmation = PaymentConfirmation(
            payer_id=invoice.payer_id,
            invoice_id=invoice.id,
            amount_cents=amount_cents,
            method=method,
            payment_type=PAYMENT_TYPE_PARKING_CHARGE,
            confirmed_by=confirmed_by,
            notes=notes,
            confirmed_at=current,
        )
        db.session.add(confirmation)
        db.session.flush()

        invoice.amount_paid_cents = (invoice.amount_paid_cents or 0) + amount_cents
        invoice_service.refresh_payment_state(invoice, current)
        settled = invoice_service.settle_covered_charges(invoice, method, current)

        append_billing_event(
            event_type="payment.recorded",
            entity_type="invoice",
            entity_id=invoice.id,
            payer_id=invoice.payer_id,
            invoice_id=invoice.id,
            actor_id=confirmed_by,
            occurred_at=current,
            note=(
                f"method={method} amount_cents={amount_cents} "
                f"status={invoice.payment_status} settled_charges={len(settled)}"
            ),
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_payment_confirmations(
    invoice_id: str | None = None,
    payer_id: str | None = None,
) -> list[PaymentConfirmation]:
    query = db.session.query(PaymentConfirmation)
    if invoice_id:
        query = query.filter_by(invoice_id=invoice_id)
    if payer_id:
        query = query.filter_by(payer_id=payer_id)
    return query.order_by(PaymentConfirmation.confirmed_at, PaymentConfirmation.id).all()


# =============================================================================
# CHARGE PAYMENTS
# =============================================================================

def confirm_charge_payment(
    charge_id: int,
    method: str,
    confirmed_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ChargeRecord:
    """
    Mark a single charge paid.

    WHY: Drivers often settle a session at the booth. Paying clears any
    overdue state on the charge, and an invoice already generated for the
    session's month is refreshed right away.

    Raises:
        NotFoundError: unknown charge
        PaymentError: unknown method, charge already paid
    """
    method = _normalize_method(method)

    def _op():
        current = now or utcnow()
        charge = lock_for_update(db.session.query(ChargeRecord).filter_by(id=charge_id)).first()
        if not charge:
            raise NotFoundError(f"Charge {charge_id} not found")
        if charge.is_paid:
            raise PaymentError(f"Charge {charge_id} is already paid")

        charge.is_paid = True
        charge.payment_method = method
        charge.paid_at = current
        charge.is_overdue = False
        charge.overdue_days = 0
        charge.overdue_surcharge_cents = 0

        db.session.add(PaymentConfirmation(
            payer_id=charge.payer_id,
            charge_id=charge.id,
            amount_cents=charge.amount_cents,
            method=method,
            payment_type=PAYMENT_TYPE_PARKING_CHARGE,
            confirmed_by=confirmed_by,
            notes=notes,
            confirmed_at=current,
        ))

        append_billing_event(
            event_type="charge.paid",
            entity_type="charge",
            entity_id=charge.id,
            payer_id=charge.payer_id,
            session_id=charge.session_id,
            charge_id=charge.id,
            actor_id=confirmed_by,
            occurred_at=current,
            note=f"method={method} amount_cents={charge.amount_cents}",
        )

        entry_at = charge.session.entry_at
        db.session.commit()
        return charge, entry_at

    charge, entry_at = run_with_retry(_op)
    invoice_service.regenerate_existing_invoice(
        charge.payer_id, entry_at.year, entry_at.month, now=now or charge.paid_at
    )
    return charge


# =============================================================================
# OVERDUE
# =============================================================================

def calculate_overdue_surcharge(amount_cents: int, overdue_days: int, daily_rate: Decimal | None = None) -> int:
    """amount * daily_rate * days, rounded half-up to whole cents."""
    if daily_rate is None:
        daily_rate = _overdue_settings()[1]
    if overdue_days <= 0 or amount_cents <= 0:
        return 0
    return to_cents(Decimal(amount_cents) * Decimal(daily_rate) * overdue_days)


def mark_overdue_charges(now: datetime | None = None) -> list[ChargeRecord]:
    """
    Age unpaid charges into overdue.

    A charge qualifies once its session ended at least the grace period ago
    and no PAID invoice lists it.
    Overdue days and surcharge are recomputed from `now`, so running the
    sweep twice for the same instant changes nothing. Existing invoices for
    the affected payer-months are refreshed.

    Returns:
        Charges whose overdue state changed
    """
    now = now or utcnow()
    grace_days, daily_rate = _overdue_settings()

    def _op():
        rows = (
            lock_for_update(
                db.session.query(ChargeRecord, ParkingSession.exit_at, ParkingSession.entry_at)
                .join(ParkingSession, ChargeRecord.session_id == ParkingSession.id)
                .filter(
                    ChargeRecord.is_paid.is_(False),
                    ChargeRecord.amount_cents > 0,
                )
            )
            .order_by(ChargeRecord.id)
            .all()
        )

        changed = []
        periods = set()
        covered = {}
        for charge, exit_at, entry_at in rows:
            invoice_id = invoice_service.invoice_id_for(charge.payer_id, entry_at.year, entry_at.month)
            if invoice_id not in covered:
                invoice = db.session.get(Invoice, invoice_id)
                covered[invoice_id] = set(invoice.charge_ids or []) if invoice and invoice.is_paid else set()
            if charge.id in covered[invoice_id]:
                continue

            days = whole_days_between(exit_at or charge.created_at, now)
            if days < grace_days:
                continue
            surcharge = calculate_overdue_surcharge(charge.amount_cents, days, daily_rate)
            if charge.is_overdue and charge.overdue_days == days and charge.overdue_surcharge_cents == surcharge:
                continue

            charge.is_overdue = True
            charge.overdue_days = days
            charge.overdue_surcharge_cents = surcharge
            changed.append(charge)
            periods.add((charge.payer_id, entry_at.year, entry_at.month))

            append_billing_event(
                event_type="charge.overdue",
                entity_type="charge",
                entity_id=charge.id,
                payer_id=charge.payer_id,
                session_id=charge.session_id,
                charge_id=charge.id,
                occurred_at=now,
                note=f"days={days} surcharge_cents={surcharge}",
            )

        db.session.commit()
        return changed, periods

    changed, periods = run_with_retry(_op)

    for payer_id, year, month in sorted(periods):
        invoice_service.regenerate_existing_invoice(payer_id, year, month, now=now)

    if changed:
        logger.info("Overdue sweep marked %d charge(s) across %d invoice period(s)", len(changed), len(periods))
    return changed


# =============================================================================
# TIER UPGRADES
# =============================================================================

DEFAULT_TIER_UPGRADE_FEES_CENTS = {
    "NORMAL->GOLD": 50000,
    "NORMAL->PLATINUM": 100000,
    "GOLD->PLATINUM": 70000,
}

TIER_RANK = {
    registry_service.TIER_NORMAL: 0,
    registry_service.TIER_GOLD: 1,
    registry_service.TIER_PLATINUM: 2,
}


def calculate_tier_upgrade_fee(from_tier: str, to_tier: str) -> int:
    """Fee in cents for moving between tiers. Unlisted moves cost nothing."""
    fees = DEFAULT_TIER_UPGRADE_FEES_CENTS
    if has_app_context():
        fees = current_app.config.get("TIER_UPGRADE_FEES_CENTS", fees)
    return int(fees.get(f"{from_tier}->{to_tier}", 0))


def request_tier_upgrade(
    payer_id: str,
    to_tier: str,
    requested_by: str | None = None,
    now: datetime | None = None,
) -> TierUpgradeRecord:
    """
    Record an unpaid upgrade request with its fee.

    The payer keeps the current tier until confirm_tier_upgrade_payment runs.

    Raises:
        NotFoundError: unknown payer
        ValidationError: unknown tier, or not an upgrade
        ConflictError: payer already has an unpaid upgrade request
    """
    to_tier = registry_service.normalize_tier(to_tier)
    payer = registry_service.get_payer(payer_id)
    if not payer:
        raise NotFoundError(f"Payer {payer_id} not found")
    if TIER_RANK[to_tier] <= TIER_RANK[payer.tier]:
        raise ValidationError(f"{to_tier} is not an upgrade from {payer.tier}")

    pending = (
        db.session.query(TierUpgradeRecord)
        .filter_by(payer_id=payer_id, is_paid=False)
        .first()
    )
    if pending:
        raise ConflictError(f"Payer {payer_id} already has pending upgrade {pending.id}")

    current = now or utcnow()
    record = TierUpgradeRecord(
        payer_id=payer_id,
        from_tier=payer.tier,
        to_tier=to_tier,
        fee_cents=calculate_tier_upgrade_fee(payer.tier, to_tier),
        is_paid=False,
        requested_by=requested_by,
        created_at=current,
    )
    db.session.add(record)
    db.session.flush()

    append_billing_event(
        event_type="tier_upgrade.requested",
        entity_type="tier_upgrade",
        entity_id=record.id,
        payer_id=payer_id,
        actor_id=requested_by,
        occurred_at=current,
        note=f"{record.from_tier}->{to_tier} fee_cents={record.fee_cents}",
    )

    db.session.commit()
    return record


def confirm_tier_upgrade_payment(
    record_id: int,
    method: str,
    confirmed_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> TierUpgradeRecord:
    """
    Confirm the upgrade fee was received and activate the new tier.

    The confirmation row, the paid flag and the tier change commit together.
    Sessions already closed keep the tier they were priced with.

    Raises:
        NotFoundError: unknown record
        PaymentError: unknown method, record already paid
        ConflictError: payer's tier changed since the request
    """
    method = _normalize_method(method)

    def _op():
        current = now or utcnow()
        record = lock_for_update(db.session.query(TierUpgradeRecord).filter_by(id=record_id)).first()
        if not record:
            raise NotFoundError(f"Tier upgrade {record_id} not found")
        if record.is_paid:
            raise PaymentError(f"Tier upgrade {record_id} is already paid")

        payer = lock_for_update(db.session.query(Payer).filter_by(id=record.payer_id)).first()
        if payer.tier != record.from_tier:
            raise ConflictError(
                f"Payer {payer.id} is {payer.tier}, upgrade {record_id} was requested from {record.from_tier}"
            )

        confirmation = PaymentConfirmation(
            payer_id=record.payer_id,
            amount_cents=record.fee_cents,
            method=method,
            payment_type=PAYMENT_TYPE_TIER_UPGRADE,
            confirmed_by=confirmed_by,
            notes=notes,
            confirmed_at=current,
        )
        db.session.add(confirmation)
        db.session.flush()

        record.is_paid = True
        record.payment_confirmation_id = confirmation.id
        record.processed_by = confirmed_by
        record.processed_at = current
        payer.tier = record.to_tier

        append_billing_event(
            event_type="tier_upgrade.paid",
            entity_type="tier_upgrade",
            entity_id=record.id,
            payer_id=record.payer_id,
            actor_id=confirmed_by,
            occurred_at=current,
            note=f"{record.from_tier}->{record.to_tier} method={method} amount_cents={record.fee_cents}",
        )

        db.session.commit()
        return record

    record = run_with_retry(_op)
    logger.info("Payer %s upgraded %s -> %s", record.payer_id, record.from_tier, record.to_tier)
    return record


def list_tier_upgrades(payer_id: str | None = None, pending_only: bool = False) -> list[TierUpgradeRecord]:
    """Newest first."""
    query = db.session.query(TierUpgradeRecord)
    if payer_id:
        query = query.filter_by(payer_id=payer_id)
    if pending_only:
        query = query.filter_by(is_paid=False)
    return query.order_by(TierUpgradeRecord.created_at.desc(), TierUpgradeRecord.id.desc()).all()


# =============================================================================
# QUERIES
# =============================================================================

def get_payer_charges(payer_id: str, limit: int = 100) -> list[ChargeRecord]:
    """Newest first."""
    return (
        db.session.query(ChargeRecord)
        .filter_by(payer_id=payer_id)
        .order_by(ChargeRecord.created_at.desc(), ChargeRecord.id.desc())
        .limit(limit)
        .all()
    )


def get_unpaid_charges(payer_id: str) -> list[ChargeRecord]:
    """Unpaid charges with a positive amount, oldest first."""
    return (
        db.session.query(ChargeRecord)
        .filter(
            ChargeRecord.payer_id == payer_id,
            ChargeRecord.is_paid.is_(False),
            ChargeRecord.amount_cents > 0,
        )
        .order_by(ChargeRecord.created_at, ChargeRecord.id)
        .all()
    )


def get_unpaid_summary(payer_id: str) -> dict:
    charges = get_unpaid_charges(payer_id)
    oldest = charges[0].created_at if charges else None
    return {
        "payer_id": payer_id,
        "total_unpaid_charges": len(charges),
        "total_unpaid_cents": sum(c.amount_cents for c in charges),
        "total_overdue_cents": sum(c.overdue_surcharge_cents or 0 for c in charges),
        "oldest_unpaid_at": to_utc_z(oldest),
        "charges": [c.to_dict() for c in charges],
    }
