from __future__ import annotations

from ..extensions import db
from parktrack.time_utils import to_utc_z


class BillingEvent(db.Model):
    """
    Append-only ledger of engine events.

    WHY: Answers "what happened to this payer's money and when" without
    reconstructing it from mutable rows.

    IMMUTABLE: Never update or delete. Written inside the same transaction
    as the change it records.
    """
    __tablename__ = "billing_events"
    __table_args__ = (
        db.Index("ix_billing_events_payer_occurred", "payer_id", "occurred_at"),
        db.Index("ix_billing_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. session.opened, session.completed, charge.created, payment.recorded
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(96), nullable=False)

    payer_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.Integer, nullable=True)
    charge_id = db.Column(db.Integer, nullable=True)
    invoice_id = db.Column(db.String(96), nullable=True)
    actor_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payer_id": self.payer_id,
            "session_id": self.session_id,
            "charge_id": self.charge_id,
            "invoice_id": self.invoice_id,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Tampered tokens point at forged or altered credentials. Every one is
    kept, with whatever identity the token claimed, for later review.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # TOKEN_TAMPERED, ...
    success = db.Column(db.Boolean, nullable=False)

    # Claimed identity (unverified when the event is a rejection)
    payer_id = db.Column(db.String(64), nullable=True, index=True)
    vehicle_id = db.Column(db.String(32), nullable=True)
    agent_id = db.Column(db.String(64), nullable=True)
    lot_id = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "success": self.success,
            "payer_id": self.payer_id,
            "vehicle_id": self.vehicle_id,
            "agent_id": self.agent_id,
            "lot_id": self.lot_id,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
