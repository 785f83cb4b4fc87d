# Overview: Pure charge computation from duration, payer tier and rate policy.

"""
Charge Calculator

WHY: Turns a closed session's duration into money. Kept free of database
and request state so the same function prices real closes, admin quotes and
tests.

ALGORITHM:
1. Billable hours
   - NORMAL: ceil(minutes / 60)
   - GOLD / PLATINUM: first hour free, then pro-rata (minutes - 60) / 60
2. Per-hour rate: tier rate on the policy if set, else base * tier factor
3. raw = hours * rate * rate-type multiplier
4. final = min(raw, max daily price)

All arithmetic is Decimal cents. Rounding to whole cents happens once, in
to_cents, when a ChargeRecord is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from flask import current_app, has_app_context

from ..errors import ChargeComputationError
from .registry_service import ELEVATED_TIERS, VALID_TIERS


DEFAULT_TIER_DISCOUNT_FACTORS = {
    "NORMAL": Decimal("1.0"),
    "GOLD": Decimal("0.8"),
    "PLATINUM": Decimal("0.6"),
}

DEFAULT_RATE_TYPE_MULTIPLIERS = {
    "NORMAL": Decimal("1.0"),
    "HOURLY": Decimal("1.0"),
    "VIP": Decimal("1.5"),
    "OVERNIGHT": Decimal("0.5"),
}

FREE_MINUTES_ELEVATED = 60
_SIXTY = Decimal(60)


@dataclass
class ChargeBreakdown:
    """Intermediate values of one computation; copied onto the ChargeRecord."""
    duration_minutes: int
    tier: str
    rate_type: str
    billable_hours: Decimal
    hourly_rate_cents: Decimal
    multiplier: Decimal
    raw_cents: Decimal
    was_capped: bool
    amount_cents: Decimal


def _as_decimal_map(values: dict, name: str) -> dict[str, Decimal]:
    try:
        return {str(k).upper(): Decimal(str(v)) for k, v in values.items()}
    except (InvalidOperation, ValueError) as exc:
        raise ChargeComputationError(f"Invalid {name} configuration: {exc}") from exc


def pricing_options_from_config() -> dict:
    """
    Tier factors and rate-type multipliers from app config, or the defaults
    outside an application context.
    """
    if not has_app_context():
        return {
            "tier_discount_factors": dict(DEFAULT_TIER_DISCOUNT_FACTORS),
            "rate_type_multipliers": dict(DEFAULT_RATE_TYPE_MULTIPLIERS),
        }
    config = current_app.config
    return {
        "tier_discount_factors": _as_decimal_map(
            config.get("BILLING_TIER_DISCOUNT_FACTORS", DEFAULT_TIER_DISCOUNT_FACTORS),
            "tier discount factor",
        ),
        "rate_type_multipliers": _as_decimal_map(
            config.get("BILLING_RATE_TYPE_MULTIPLIERS", DEFAULT_RATE_TYPE_MULTIPLIERS),
            "rate type multiplier",
        ),
    }


def billable_hours(duration_minutes: int, tier: str) -> Decimal:
    if tier in ELEVATED_TIERS:
        if duration_minutes <= FREE_MINUTES_ELEVATED:
            return Decimal(0)
        return Decimal(duration_minutes - FREE_MINUTES_ELEVATED) / _SIXTY
    # Any started hour counts in full
    return Decimal(-(-duration_minutes // 60))


def calculate_breakdown(
    duration_minutes: int,
    tier: str,
    rate_policy,
    *,
    tier_discount_factors: dict | None = None,
    rate_type_multipliers: dict | None = None,
) -> ChargeBreakdown:
    """
    Price a duration under a rate policy.

    Args:
        duration_minutes: whole minutes, >= 0
        tier: NORMAL, GOLD or PLATINUM
        rate_policy: anything with the RatePolicy pricing attributes

    Raises:
        ChargeComputationError: negative duration, unknown tier or rate-type,
        inactive policy, non-positive cap or rate
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ChargeComputationError("Duration must be a whole number of minutes")
    if duration_minutes < 0:
        raise ChargeComputationError(f"Negative duration: {duration_minutes} minutes")
    if tier not in VALID_TIERS:
        raise ChargeComputationError(f"Unknown tier: {tier}")
    if rate_policy is None:
        raise ChargeComputationError("No rate policy")
    if not rate_policy.is_active:
        raise ChargeComputationError(f"Rate policy {rate_policy.id} is not active")

    factors = tier_discount_factors or DEFAULT_TIER_DISCOUNT_FACTORS
    multipliers = rate_type_multipliers or DEFAULT_RATE_TYPE_MULTIPLIERS

    rate_type = rate_policy.rate_type
    if rate_type not in multipliers:
        raise ChargeComputationError(f"Unknown rate type: {rate_type}")
    if tier not in factors:
        raise ChargeComputationError(f"No discount factor configured for tier {tier}")

    cap = Decimal(rate_policy.max_daily_price_cents or 0)
    if cap <= 0:
        raise ChargeComputationError(f"Rate policy {rate_policy.id} has no positive daily cap")

    tier_rate = rate_policy.tier_rate_cents(tier)
    if tier_rate:
        hourly_rate = Decimal(tier_rate)
    else:
        hourly_rate = Decimal(rate_policy.base_price_per_hour_cents or 0) * Decimal(factors[tier])
    if hourly_rate <= 0:
        raise ChargeComputationError(f"Rate policy {rate_policy.id} has no positive {tier} rate")

    multiplier = Decimal(multipliers[rate_type])
    hours = billable_hours(duration_minutes, tier)
    raw = hours * hourly_rate * multiplier

    was_capped = raw > cap
    amount = cap if was_capped else raw

    return ChargeBreakdown(
        duration_minutes=duration_minutes,
        tier=tier,
        rate_type=rate_type,
        billable_hours=hours,
        hourly_rate_cents=hourly_rate,
        multiplier=multiplier,
        raw_cents=raw,
        was_capped=was_capped,
        amount_cents=amount,
    )


def compute_charge(
    duration_minutes: int,
    tier: str,
    rate_policy,
    *,
    tier_discount_factors: dict | None = None,
    rate_type_multipliers: dict | None = None,
) -> Decimal:
    """Charge in (fractional) cents. See calculate_breakdown."""
    return calculate_breakdown(
        duration_minutes,
        tier,
        rate_policy,
        tier_discount_factors=tier_discount_factors,
        rate_type_multipliers=rate_type_multipliers,
    ).amount_cents


def to_cents(amount: Decimal) -> int:
    return int(Decimal(amount).quantize(Decimal(1), rounding=ROUND_HALF_UP))
