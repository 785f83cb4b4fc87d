from __future__ import annotations

from ..extensions import db
from parktrack.time_utils import to_utc_z


class ChargeRecord(db.Model):
    """
    Price of one completed parking session.

    WHY: Created in the same transaction that completes the session, so a
    completed session without a charge (or the reverse) never exists.

    IMMUTABLE AMOUNT: amount_cents is a point-in-time derivation from the rate
    policy referenced by rate_policy_id. Later price changes do not touch it.
    Only the payment/overdue columns change, through payment reconciliation.
    """
    __tablename__ = "charge_records"
    __table_args__ = (
        db.Index("ix_charge_records_payer_paid", "payer_id", "is_paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("parking_sessions.id"), nullable=False, unique=True)
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)
    lot_id = db.Column(db.String(64), db.ForeignKey("parking_lots.id"), nullable=False)
    rate_policy_id = db.Column(db.Integer, db.ForeignKey("rate_policies.id"), nullable=False)

    # Snapshot of the pricing inputs
    rate_type = db.Column(db.String(16), nullable=False)
    tier = db.Column(db.String(16), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    billable_hours = db.Column(db.Numeric(10, 4), nullable=False)
    hourly_rate_cents = db.Column(db.Numeric(12, 4), nullable=False)
    was_capped = db.Column(db.Boolean, nullable=False, default=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment reconciliation
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    payment_method = db.Column(db.String(32), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settled_invoice_id = db.Column(db.String(96), nullable=True, index=True)  # Set when an invoice payment covered it

    is_overdue = db.Column(db.Boolean, nullable=False, default=False)
    overdue_days = db.Column(db.Integer, nullable=False, default=0)
    overdue_surcharge_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    session = db.relationship("ParkingSession", backref=db.backref("charge", uselist=False, lazy=True))
    rate_policy = db.relationship("RatePolicy")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "payer_id": self.payer_id,
            "lot_id": self.lot_id,
            "rate_policy_id": self.rate_policy_id,
            "rate_type": self.rate_type,
            "tier": self.tier,
            "duration_minutes": self.duration_minutes,
            "billable_hours": str(self.billable_hours),
            "hourly_rate_cents": str(self.hourly_rate_cents),
            "was_capped": self.was_capped,
            "amount_cents": self.amount_cents,
            "discount_cents": self.discount_cents,
            "is_paid": self.is_paid,
            "payment_method": self.payment_method,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "settled_invoice_id": self.settled_invoice_id,
            "is_overdue": self.is_overdue,
            "overdue_days": self.overdue_days,
            "overdue_surcharge_cents": self.overdue_surcharge_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Monthly roll-up of one payer's charges.

    WHY: The identifier is derived from (payer, period), so regenerating or
    generating concurrently updates the same row instead of inserting a
    duplicate.

    DERIVED STATUS: payment_status is recomputed from the totals every time
    they change. Nothing writes it directly.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("payer_id", "period", name="uq_invoices_payer_period"),
        db.Index("ix_invoices_status", "payment_status"),
    )

    id = db.Column(db.String(96), primary_key=True)  # "{payer_id}_{YYYY-MM}"
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)

    period = db.Column(db.String(7), nullable=False)  # YYYY-MM
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)

    charge_ids = db.Column(db.JSON, nullable=False, default=list)

    total_sessions = db.Column(db.Integer, nullable=False, default=0)
    total_duration_minutes = db.Column(db.Integer, nullable=False, default=0)
    total_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    total_overdue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)  # Never negative

    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, PARTIAL, PAID, OVERDUE

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payer = db.relationship("Payer", backref=db.backref("invoices", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payer_id": self.payer_id,
            "period": self.period,
            "year": self.year,
            "month": self.month,
            "charge_ids": list(self.charge_ids or []),
            "total_sessions": self.total_sessions,
            "total_duration_minutes": self.total_duration_minutes,
            "total_charges_cents": self.total_charges_cents,
            "total_overdue_cents": self.total_overdue_cents,
            "total_discount_cents": self.total_discount_cents,
            "net_amount_cents": self.net_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "is_paid": self.is_paid,
            "payment_status": self.payment_status,
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentConfirmation(db.Model):
    """
    Confirmed payment recorded by an administrator or cashier.

    WHY: The engine does not talk to payment gateways. Staff confirm money
    received (cash, bank transfer, ...) and this row is the audit trail.

    IMMUTABLE: Append-only. Targets an invoice, a single charge, or a tier
    upgrade (payment_type TIER_UPGRADE).
    """
    __tablename__ = "payment_confirmations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)
    invoice_id = db.Column(db.String(96), db.ForeignKey("invoices.id"), nullable=True, index=True)
    charge_id = db.Column(db.Integer, db.ForeignKey("charge_records.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)  # CASH, CARD, BANK_TRANSFER, ONLINE
    payment_type = db.Column(db.String(24), nullable=False, default="PARKING_CHARGE")  # PARKING_CHARGE, TIER_UPGRADE

    confirmed_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payer_id": self.payer_id,
            "invoice_id": self.invoice_id,
            "charge_id": self.charge_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "payment_type": self.payment_type,
            "confirmed_by": self.confirmed_by,
            "notes": self.notes,
            "confirmed_at": to_utc_z(self.confirmed_at),
        }


class BillingBacklogItem(db.Model):
    """
    Session that could not be priced when it was closed.

    WHY: A close without a charge would be unbillable. The close is rolled
    back instead and the failure lands here for an administrator to fix the
    rate configuration.
    """
    __tablename__ = "billing_backlog"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("parking_sessions.id"), nullable=False, index=True)
    payer_id = db.Column(db.String(64), nullable=False)
    lot_id = db.Column(db.String(64), nullable=False)
    rate_type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, RESOLVED
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "payer_id": self.payer_id,
            "lot_id": self.lot_id,
            "rate_type": self.rate_type,
            "reason": self.reason,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }


class TierUpgradeRecord(db.Model):
    """
    Paid request to move a payer to a higher tier.

    WHY: Upgrading is not free. The request is recorded with its fee, and the
    new tier only takes effect once staff confirm the fee was received.

    LIFECYCLE: is_paid flips once, together with the PaymentConfirmation row
    and the payer's tier change. A confirmed record is never reopened.
    """
    __tablename__ = "tier_upgrade_records"
    __table_args__ = (
        db.Index("ix_tier_upgrade_records_paid", "is_paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)

    from_tier = db.Column(db.String(16), nullable=False)
    to_tier = db.Column(db.String(16), nullable=False)
    fee_cents = db.Column(db.Integer, nullable=False)

    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    payment_confirmation_id = db.Column(db.Integer, db.ForeignKey("payment_confirmations.id"), nullable=True)

    requested_by = db.Column(db.String(64), nullable=True)
    processed_by = db.Column(db.String(64), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payer = db.relationship("Payer", backref=db.backref("tier_upgrades", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payer_id": self.payer_id,
            "from_tier": self.from_tier,
            "to_tier": self.to_tier,
            "fee_cents": self.fee_cents,
            "is_paid": self.is_paid,
            "payment_confirmation_id": self.payment_confirmation_id,
            "requested_by": self.requested_by,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "created_at": to_utc_z(self.created_at),
        }
