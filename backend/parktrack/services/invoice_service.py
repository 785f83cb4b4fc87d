# Overview: Service-layer operations for invoices; monthly aggregation of charges per payer.

"""
Invoice Aggregator

WHY: Payers settle monthly. An invoice rolls up every charge whose session
started in the month and tracks what has been paid against it.

DESIGN PRINCIPLES:
- Deterministic identity: invoice id is "{payer_id}_{YYYY-MM}". Regenerating
  updates the same row; two concurrent generations converge on one row.
- Derived status: payment_status comes from derive_payment_status and is
  never set on its own.
- Money only moves forward: amount paid never decreases on regeneration, and
  balance due is clamped at zero.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import ChargeRecord, Invoice, ParkingSession, PaymentConfirmation
from parktrack.time_utils import format_period, month_bounds, utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_billing_event
from . import registry_service


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

INVOICE_STATUS_PENDING = "PENDING"
INVOICE_STATUS_PARTIAL = "PARTIAL"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_OVERDUE = "OVERDUE"

VALID_INVOICE_STATUSES = [
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
]

DEFAULT_INVOICE_DUE_DAYS = 15


def invoice_id_for(payer_id: str, year: int, month: int) -> str:
    return f"{payer_id}_{format_period(year, month)}"


def _validate_period(year, month) -> None:
    if isinstance(year, bool) or not isinstance(year, int) or not 2000 <= year <= 9999:
        raise ValidationError(f"Invalid year: {year}")
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")


def _due_days() -> int:
    if has_app_context():
        return int(current_app.config.get("INVOICE_DUE_DAYS", DEFAULT_INVOICE_DUE_DAYS))
    return DEFAULT_INVOICE_DUE_DAYS


def derive_payment_status(
    net_amount_cents: int,
    amount_paid_cents: int,
    total_overdue_cents: int,
    due_date: datetime | None,
    now: datetime,
) -> str:
    """
    Single source of truth for invoice status.

    PAID once nothing is owed. Otherwise OVERDUE if surcharges accrued or the
    due date passed, PARTIAL if something was paid, else PENDING.
    """
    if net_amount_cents - amount_paid_cents <= 0:
        return INVOICE_STATUS_PAID
    if total_overdue_cents > 0 or (due_date is not None and now > due_date):
        return INVOICE_STATUS_OVERDUE
    if amount_paid_cents > 0:
        return INVOICE_STATUS_PARTIAL
    return INVOICE_STATUS_PENDING


def refresh_payment_state(invoice: Invoice, now: datetime) -> None:
    """Recompute balance, paid flag and status from the invoice totals."""
    invoice.balance_due_cents = max(0, invoice.net_amount_cents - invoice.amount_paid_cents)
    invoice.payment_status = derive_payment_status(
        invoice.net_amount_cents,
        invoice.amount_paid_cents,
        invoice.total_overdue_cents,
        invoice.due_date,
        now,
    )
    invoice.is_paid = invoice.payment_status == INVOICE_STATUS_PAID
    if invoice.is_paid and invoice.paid_at is None:
        invoice.paid_at = now
    elif not invoice.is_paid:
        invoice.paid_at = None
    invoice.updated_at = now


# =============================================================================
# GENERATION
# =============================================================================

def _period_charges(payer_id: str, start: datetime, end: datetime) -> list[ChargeRecord]:
    return (
        db.session.query(ChargeRecord)
        .join(ParkingSession, ChargeRecord.session_id == ParkingSession.id)
        .filter(
            ChargeRecord.payer_id == payer_id,
            ParkingSession.entry_at >= start,
            ParkingSession.entry_at < end,
        )
        .order_by(ChargeRecord.id)
        .all()
    )


def _confirmed_invoice_payments(invoice_id: str) -> int:
    total = db.session.query(func.coalesce(func.sum(PaymentConfirmation.amount_cents), 0)).filter(
        PaymentConfirmation.invoice_id == invoice_id
    ).scalar()
    return int(total or 0)


def _latest_invoice_payment_method(invoice_id: str) -> str | None:
    row = (
        db.session.query(PaymentConfirmation.method)
        .filter(PaymentConfirmation.invoice_id == invoice_id)
        .order_by(PaymentConfirmation.confirmed_at.desc(), PaymentConfirmation.id.desc())
        .first()
    )
    return row[0] if row else None


def settle_covered_charges(invoice: Invoice, method: str | None, now: datetime) -> list[ChargeRecord]:
    """
    Mark the unpaid charges of a PAID invoice as paid.

    Settled charges keep their accrued surcharge, since the invoice payment
    covered it, but stop being overdue. settled_invoice_id tells the totals
    that the money behind them arrived as an invoice payment, not per charge.

    Returns:
        Charges settled by this call
    """
    if not invoice.is_paid or not invoice.charge_ids:
        return []

    charges = (
        lock_for_update(
            db.session.query(ChargeRecord).filter(
                ChargeRecord.id.in_(list(invoice.charge_ids)),
                ChargeRecord.is_paid.is_(False),
                ChargeRecord.amount_cents > 0,
            )
        )
        .order_by(ChargeRecord.id)
        .all()
    )
    for charge in charges:
        charge.is_paid = True
        charge.payment_method = method
        charge.paid_at = now
        charge.settled_invoice_id = invoice.id
        charge.is_overdue = False

        append_billing_event(
            event_type="charge.settled",
            entity_type="charge",
            entity_id=charge.id,
            payer_id=charge.payer_id,
            session_id=charge.session_id,
            charge_id=charge.id,
            invoice_id=invoice.id,
            occurred_at=now,
            note=f"method={method} amount_cents={charge.amount_cents}",
        )
    return charges


def _apply_totals(invoice: Invoice, charges: list[ChargeRecord], now: datetime) -> None:
    # Surcharges stay owed while unpaid and stay billed once an invoice payment covered them
    total_charges = sum(c.amount_cents for c in charges)
    total_overdue = sum(
        c.overdue_surcharge_cents for c in charges
        if (c.is_overdue and not c.is_paid) or c.settled_invoice_id
    )
    paid_charges = sum(c.amount_cents for c in charges if c.is_paid and not c.settled_invoice_id)

    invoice.charge_ids = [c.id for c in charges]
    invoice.total_sessions = len(charges)
    invoice.total_duration_minutes = sum(c.duration_minutes for c in charges)
    invoice.total_charges_cents = total_charges
    invoice.total_overdue_cents = total_overdue
    invoice.total_discount_cents = sum(c.discount_cents or 0 for c in charges)
    invoice.net_amount_cents = total_charges + total_overdue

    recomputed_paid = paid_charges + _confirmed_invoice_payments(invoice.id)
    invoice.amount_paid_cents = max(invoice.amount_paid_cents or 0, recomputed_paid)

    refresh_payment_state(invoice, now)
    settle_covered_charges(invoice, _latest_invoice_payment_method(invoice.id), now)


def generate_invoice(payer_id: str, year: int, month: int, now: datetime | None = None) -> Invoice:
    """
    Create or refresh the payer's invoice for a calendar month.

    Idempotent: calling it again with no new charges or payments leaves the
    totals unchanged.

    Raises:
        ValidationError: bad period
        NotFoundError: unknown payer
    """
    _validate_period(year, month)
    if not registry_service.get_payer(payer_id):
        raise NotFoundError(f"Payer {payer_id} not found")

    invoice_id = invoice_id_for(payer_id, year, month)
    start, end = month_bounds(year, month)
    due_date = end + timedelta(days=_due_days())

    def _op():
        current = now or utcnow()
        charges = _period_charges(payer_id, start, end)

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        created = invoice is None
        if created:
            invoice = Invoice(
                id=invoice_id,
                payer_id=payer_id,
                period=format_period(year, month),
                year=year,
                month=month,
                amount_paid_cents=0,
                due_date=due_date,
                created_at=current,
                updated_at=current,
            )
            db.session.add(invoice)

        _apply_totals(invoice, charges, current)

        if created:
            append_billing_event(
                event_type="invoice.generated",
                entity_type="invoice",
                entity_id=invoice_id,
                payer_id=payer_id,
                invoice_id=invoice_id,
                occurred_at=current,
                note=f"sessions={invoice.total_sessions} net_cents={invoice.net_amount_cents}",
            )

        db.session.commit()
        return invoice

    for attempt in range(3):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # Lost the insert race for this (payer, period); the next pass updates the winner's row
            db.session.rollback()
            if attempt >= 2:
                raise


def generate_invoices_for_period(year: int, month: int, now: datetime | None = None) -> list[Invoice]:
    """One invoice per payer with at least one session started in the month."""
    _validate_period(year, month)
    start, end = month_bounds(year, month)
    payer_ids = [
        row[0]
        for row in db.session.query(ChargeRecord.payer_id)
        .join(ParkingSession, ChargeRecord.session_id == ParkingSession.id)
        .filter(ParkingSession.entry_at >= start, ParkingSession.entry_at < end)
        .distinct()
        .order_by(ChargeRecord.payer_id)
        .all()
    ]
    return [generate_invoice(payer_id, year, month, now=now) for payer_id in payer_ids]


def regenerate_existing_invoice(payer_id: str, year: int, month: int, now: datetime | None = None) -> Invoice | None:
    """Refresh an invoice only if it was already generated."""
    if not get_invoice(invoice_id_for(payer_id, year, month)):
        return None
    return generate_invoice(payer_id, year, month, now=now)


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: str) -> Invoice | None:
    return db.session.get(Invoice, invoice_id)


def list_payer_invoices(payer_id: str) -> list[Invoice]:
    """Newest period first."""
    return (
        db.session.query(Invoice)
        .filter_by(payer_id=payer_id)
        .order_by(Invoice.year.desc(), Invoice.month.desc())
        .all()
    )


def list_invoices(status: str | None = None, limit: int = 100) -> list[Invoice]:
    query = db.session.query(Invoice)
    if status:
        status = status.upper()
        if status not in VALID_INVOICE_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_INVOICE_STATUSES}")
        query = query.filter_by(payment_status=status)
    return query.order_by(Invoice.period.desc(), Invoice.payer_id).limit(limit).all()
