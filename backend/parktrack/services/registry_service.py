# Overview: Read-only registry lookups for payers, vehicles and lots, plus admin seeding helpers.

"""
Registry collaborator.

The engine reads payer tiers, vehicles and lots; it never changes them while
processing scans or bills. The register_* / set_payer_tier helpers exist for
the administrative CLI and tests.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Payer, Vehicle, ParkingLot


# =============================================================================
# SUBSCRIPTION TIERS (CONSTANTS)
# =============================================================================

TIER_NORMAL = "NORMAL"
TIER_GOLD = "GOLD"
TIER_PLATINUM = "PLATINUM"

VALID_TIERS = [
    TIER_NORMAL,
    TIER_GOLD,
    TIER_PLATINUM,
]

# Tiers that get the first hour free and pro-rata billing after it
ELEVATED_TIERS = {TIER_GOLD, TIER_PLATINUM}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_payer(payer_id: str) -> Payer | None:
    return db.session.get(Payer, payer_id)


def get_payer_tier(payer_id: str) -> str:
    """
    Raises:
        NotFoundError: unknown payer
    """
    payer = get_payer(payer_id)
    if not payer:
        raise NotFoundError(f"Payer {payer_id} not found")
    return payer.tier


def get_vehicle(vehicle_id: str) -> Vehicle | None:
    return db.session.get(Vehicle, vehicle_id)


def get_lot(lot_id: str) -> ParkingLot | None:
    return db.session.get(ParkingLot, lot_id)


def require_lot(lot_id: str) -> ParkingLot:
    lot = get_lot(lot_id)
    if not lot or not lot.is_active:
        raise NotFoundError(f"Parking lot {lot_id} not found")
    return lot


def list_payers() -> list[Payer]:
    return db.session.query(Payer).order_by(Payer.id).all()


# =============================================================================
# ADMINISTRATION
# =============================================================================

def normalize_tier(tier: str) -> str:
    if not isinstance(tier, str):
        raise ValidationError(f"Invalid tier: {tier!r}")
    tier = (tier or "").strip().upper()
    if tier not in VALID_TIERS:
        raise ValidationError(f"Invalid tier: {tier}. Must be one of {VALID_TIERS}")
    return tier


def register_payer(payer_id: str, name: str, email: str | None = None, tier: str = TIER_NORMAL) -> Payer:
    if not payer_id or not name:
        raise ValidationError("payer_id and name required")
    if get_payer(payer_id):
        raise ValidationError(f"Payer {payer_id} already exists")

    payer = Payer(id=payer_id, name=name, email=email, tier=normalize_tier(tier), is_active=True)
    db.session.add(payer)
    db.session.commit()
    return payer


def set_payer_tier(payer_id: str, tier: str) -> Payer:
    payer = get_payer(payer_id)
    if not payer:
        raise NotFoundError(f"Payer {payer_id} not found")
    payer.tier = normalize_tier(tier)
    db.session.commit()
    return payer


def register_vehicle(vehicle_id: str, payer_id: str, model: str | None = None, color: str | None = None) -> Vehicle:
    vehicle_id = (vehicle_id or "").strip().upper()
    if not vehicle_id:
        raise ValidationError("vehicle_id required")
    if not get_payer(payer_id):
        raise NotFoundError(f"Payer {payer_id} not found")
    if get_vehicle(vehicle_id):
        raise ValidationError(f"Vehicle {vehicle_id} already registered")

    vehicle = Vehicle(id=vehicle_id, payer_id=payer_id, model=model, color=color, is_active=True)
    db.session.add(vehicle)
    db.session.commit()
    return vehicle


def register_lot(lot_id: str, name: str, capacity: int | None = None) -> ParkingLot:
    if not lot_id or not name:
        raise ValidationError("lot_id and name required")
    if get_lot(lot_id):
        raise ValidationError(f"Parking lot {lot_id} already exists")

    lot = ParkingLot(id=lot_id, name=name, capacity=capacity, is_active=True)
    db.session.add(lot)
    db.session.commit()
    return lot
