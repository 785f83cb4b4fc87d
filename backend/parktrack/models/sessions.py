from __future__ import annotations

from ..extensions import db
from parktrack.time_utils import to_utc_z


class ParkingSession(db.Model):
    """
    One stay of one vehicle in one lot.

    LIFECYCLE:
    - ACTIVE: opened by a validated entry scan
    - COMPLETED: closed by a validated exit scan (exit_at and duration set)

    IMMUTABLE: Once COMPLETED, a session is never modified again.

    INVARIANT: At most one ACTIVE session per payer. The partial unique index
    below makes the database reject a second one, so two gates racing on the
    same payer cannot both insert.
    """
    __tablename__ = "parking_sessions"
    __table_args__ = (
        db.Index(
            "uq_parking_sessions_active_payer",
            "payer_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_parking_sessions_payer_entry", "payer_id", "entry_at"),
        db.Index("ix_parking_sessions_lot_status", "lot_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.String(32), db.ForeignKey("vehicles.id"), nullable=False, index=True)
    lot_id = db.Column(db.String(64), db.ForeignKey("parking_lots.id"), nullable=False)

    # Pricing mode chosen at the gate (NORMAL, VIP, HOURLY, OVERNIGHT)
    rate_type = db.Column(db.String(16), nullable=False, default="NORMAL")

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, COMPLETED

    entry_at = db.Column(db.DateTime(timezone=True), nullable=False)
    exit_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)  # Set at close

    # Agents who scanned the entry and exit tokens
    entry_agent_id = db.Column(db.String(64), nullable=False)
    exit_agent_id = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    payer = db.relationship("Payer", backref=db.backref("sessions", lazy=True))
    vehicle = db.relationship("Vehicle", backref=db.backref("sessions", lazy=True))
    lot = db.relationship("ParkingLot", backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payer_id": self.payer_id,
            "vehicle_id": self.vehicle_id,
            "lot_id": self.lot_id,
            "rate_type": self.rate_type,
            "status": self.status,
            "entry_at": to_utc_z(self.entry_at),
            "exit_at": to_utc_z(self.exit_at) if self.exit_at else None,
            "duration_minutes": self.duration_minutes,
            "entry_agent_id": self.entry_agent_id,
            "exit_agent_id": self.exit_agent_id,
            "version_id": self.version_id,
        }
