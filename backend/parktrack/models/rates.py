from __future__ import annotations

from ..extensions import db
from parktrack.time_utils import to_utc_z


class RatePolicy(db.Model):
    """
    Pricing configuration for one (lot, rate-type) pair.

    WHY: Administrators change prices over time. Policies are replaced, not
    edited in place: the old row is deactivated and a new active row is
    inserted, so every charge can point at the exact policy it was priced
    with.

    INVARIANT: At most one active policy per (lot_id, rate_type), enforced by
    the partial unique index.

    All prices in cents. Tier rates of 0 mean "not configured"; the charge
    calculator then falls back to the base rate scaled by the tier factor.
    """
    __tablename__ = "rate_policies"
    __table_args__ = (
        db.Index(
            "uq_rate_policies_active_lot_type",
            "lot_id",
            "rate_type",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lot_id = db.Column(db.String(64), db.ForeignKey("parking_lots.id"), nullable=False, index=True)
    rate_type = db.Column(db.String(16), nullable=False)  # NORMAL, VIP, HOURLY, OVERNIGHT

    base_price_per_hour_cents = db.Column(db.Integer, nullable=False)
    max_daily_price_cents = db.Column(db.Integer, nullable=False)

    # Tier-specific overrides of the base rate
    normal_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    gold_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    platinum_rate_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lot = db.relationship("ParkingLot", backref=db.backref("rate_policies", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def tier_rate_cents(self, tier: str) -> int:
        return {
            "NORMAL": self.normal_rate_cents,
            "GOLD": self.gold_rate_cents,
            "PLATINUM": self.platinum_rate_cents,
        }.get(tier) or 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_id": self.lot_id,
            "rate_type": self.rate_type,
            "base_price_per_hour_cents": self.base_price_per_hour_cents,
            "max_daily_price_cents": self.max_daily_price_cents,
            "normal_rate_cents": self.normal_rate_cents,
            "gold_rate_cents": self.gold_rate_cents,
            "platinum_rate_cents": self.platinum_rate_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "deactivated_at": to_utc_z(self.deactivated_at) if self.deactivated_at else None,
            "version_id": self.version_id,
        }
