from __future__ import annotations

from ..extensions import db
from parktrack.time_utils import to_utc_z


class Payer(db.Model):
    """
    Billable driver account.

    WHY: The engine only needs the payer's subscription tier at charge time.
    Everything else about the account belongs to the account system; the
    columns here are the minimum the billing and admin screens display.
    """
    __tablename__ = "payers"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    # NORMAL, GOLD, PLATINUM
    tier = db.Column(db.String(16), nullable=False, default="NORMAL")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "tier": self.tier,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Vehicle(db.Model):
    """Registered vehicle. The identifier is the plate as printed in tokens."""
    __tablename__ = "vehicles"

    id = db.Column(db.String(32), primary_key=True)
    payer_id = db.Column(db.String(64), db.ForeignKey("payers.id"), nullable=False, index=True)
    model = db.Column(db.String(128), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payer = db.relationship("Payer", backref=db.backref("vehicles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payer_id": self.payer_id,
            "model": self.model,
            "color": self.color,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ParkingLot(db.Model):
    """Managed facility. Gates belong to a lot; rate policies are per lot."""
    __tablename__ = "parking_lots"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    capacity = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
