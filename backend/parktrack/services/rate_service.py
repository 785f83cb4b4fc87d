# Overview: Service-layer operations for rate policies; lookup and atomic replacement.

"""
Rate Policy Service

WHY: Each lot prices each rate-type (NORMAL, VIP, HOURLY, OVERNIGHT) with
its own policy. Exactly one policy is active per (lot, rate-type).

DESIGN PRINCIPLES:
- Replace, don't edit: set_rate_policy deactivates the current policy and
  inserts a new one in the same transaction. Charges keep pointing at the
  policy they were priced with.
- No caching: lookups hit the database every time, so a price change applies
  to the next session closed after it.
- Conditional write: the partial unique index on active (lot, rate-type)
  rejects a second active row if two admins replace the same policy at once;
  the loser is retried against the new current row.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import RatePolicy
from parktrack.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .registry_service import require_lot


# =============================================================================
# RATE TYPES (CONSTANTS)
# =============================================================================

RATE_TYPE_NORMAL = "NORMAL"
RATE_TYPE_VIP = "VIP"
RATE_TYPE_HOURLY = "HOURLY"
RATE_TYPE_OVERNIGHT = "OVERNIGHT"

VALID_RATE_TYPES = [
    RATE_TYPE_NORMAL,
    RATE_TYPE_VIP,
    RATE_TYPE_HOURLY,
    RATE_TYPE_OVERNIGHT,
]


def normalize_rate_type(rate_type: str | None) -> str:
    if rate_type is not None and not isinstance(rate_type, str):
        raise ValidationError(f"Invalid rate type: {rate_type!r}")
    rate_type = (rate_type or RATE_TYPE_NORMAL).strip().upper()
    if rate_type not in VALID_RATE_TYPES:
        raise ValidationError(f"Invalid rate type: {rate_type}. Must be one of {VALID_RATE_TYPES}")
    return rate_type


# =============================================================================
# LOOKUP
# =============================================================================

def lookup_rate_policy(lot_id: str, rate_type: str) -> RatePolicy:
    """
    Get the active policy for (lot, rate-type).

    Raises:
        NotFoundError: no active policy for the pair
    """
    policy = db.session.query(RatePolicy).filter_by(
        lot_id=lot_id,
        rate_type=rate_type,
        is_active=True,
    ).first()
    if not policy:
        raise NotFoundError(f"No active {rate_type} rate policy for lot {lot_id}")
    return policy


def get_rate_policy(policy_id: int) -> RatePolicy | None:
    return db.session.get(RatePolicy, policy_id)


def list_rate_policies(lot_id: str, include_inactive: bool = False) -> list[RatePolicy]:
    query = db.session.query(RatePolicy).filter_by(lot_id=lot_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(RatePolicy.rate_type, RatePolicy.id.desc()).all()


# =============================================================================
# ADMINISTRATION
# =============================================================================

def _validate_cents(name: str, value, *, positive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer amount in cents")
    if positive and value <= 0:
        raise ValidationError(f"{name} must be positive")
    if value < 0:
        raise ValidationError(f"{name} cannot be negative")
    return value


def set_rate_policy(
    lot_id: str,
    rate_type: str,
    base_price_per_hour_cents: int,
    max_daily_price_cents: int,
    normal_rate_cents: int = 0,
    gold_rate_cents: int = 0,
    platinum_rate_cents: int = 0,
) -> RatePolicy:
    """
    Install a new active policy for (lot, rate-type), replacing any current one.

    Returns:
        The new active RatePolicy

    Raises:
        ValidationError: bad prices or rate-type
        NotFoundError: unknown lot
    """
    rate_type = normalize_rate_type(rate_type)
    base = _validate_cents("base_price_per_hour_cents", base_price_per_hour_cents)
    cap = _validate_cents("max_daily_price_cents", max_daily_price_cents, positive=True)
    tier_rates = {
        "normal_rate_cents": _validate_cents("normal_rate_cents", normal_rate_cents),
        "gold_rate_cents": _validate_cents("gold_rate_cents", gold_rate_cents),
        "platinum_rate_cents": _validate_cents("platinum_rate_cents", platinum_rate_cents),
    }
    if base == 0 and not all(tier_rates.values()):
        raise ValidationError("base_price_per_hour_cents is required unless every tier rate is set")

    require_lot(lot_id)

    def _op():
        now = utcnow()
        current = lock_for_update(
            db.session.query(RatePolicy).filter_by(lot_id=lot_id, rate_type=rate_type, is_active=True)
        ).first()
        if current:
            current.is_active = False
            current.deactivated_at = now
            # Old row must be inactive before the new row hits the unique index
            db.session.flush()

        policy = RatePolicy(
            lot_id=lot_id,
            rate_type=rate_type,
            base_price_per_hour_cents=base,
            max_daily_price_cents=cap,
            is_active=True,
            created_at=now,
            **tier_rates,
        )
        db.session.add(policy)
        db.session.flush()
        db.session.commit()
        return policy

    for attempt in range(3):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # Another admin activated a policy for this pair first
            db.session.rollback()
            if attempt >= 2:
                raise ConflictError(f"Rate policy for {lot_id}/{rate_type} is being replaced concurrently; retry") from None


def deactivate_rate_policy(policy_id: int) -> RatePolicy:
    def _op():
        policy = lock_for_update(db.session.query(RatePolicy).filter_by(id=policy_id)).first()
        if not policy:
            raise NotFoundError(f"Rate policy {policy_id} not found")
        if policy.is_active:
            policy.is_active = False
            policy.deactivated_at = utcnow()
            db.session.commit()
        return policy

    return run_with_retry(_op)
