# backend/parktrack/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Shared secret for gate token digests. Never sent to clients.
    TOKEN_SECRET = os.environ.get("TOKEN_SECRET", SECRET_KEY)

    # SQLite DB stored in backend/instance/parktrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///parktrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Gate tokens
    TOKEN_FRESHNESS_SECONDS = int(os.environ.get("TOKEN_FRESHNESS_SECONDS", "30"))
    TOKEN_CLOCK_SKEW_SECONDS = int(os.environ.get("TOKEN_CLOCK_SKEW_SECONDS", "5"))

    # Pricing knobs. Factors apply to the base rate when a lot has no
    # explicit tier rate; multipliers apply per rate-type.
    BILLING_TIER_DISCOUNT_FACTORS = {
        "NORMAL": os.environ.get("BILLING_NORMAL_FACTOR", "1.0"),
        "GOLD": os.environ.get("BILLING_GOLD_FACTOR", "0.8"),
        "PLATINUM": os.environ.get("BILLING_PLATINUM_FACTOR", "0.6"),
    }
    BILLING_RATE_TYPE_MULTIPLIERS = {
        "NORMAL": os.environ.get("BILLING_NORMAL_MULTIPLIER", "1.0"),
        "HOURLY": os.environ.get("BILLING_HOURLY_MULTIPLIER", "1.0"),
        "VIP": os.environ.get("BILLING_VIP_MULTIPLIER", "1.5"),
        "OVERNIGHT": os.environ.get("BILLING_OVERNIGHT_MULTIPLIER", "0.5"),
    }

    # Reconciliation
    OVERDUE_GRACE_DAYS = int(os.environ.get("OVERDUE_GRACE_DAYS", "7"))
    OVERDUE_DAILY_SURCHARGE_RATE = os.environ.get("OVERDUE_DAILY_SURCHARGE_RATE", "0.05")
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "15"))

    # Tier upgrade fees in cents, keyed "FROM->TO". Downgrades are free.
    TIER_UPGRADE_FEES_CENTS = {
        "NORMAL->GOLD": int(os.environ.get("TIER_FEE_NORMAL_GOLD", "50000")),
        "NORMAL->PLATINUM": int(os.environ.get("TIER_FEE_NORMAL_PLATINUM", "100000")),
        "GOLD->PLATINUM": int(os.environ.get("TIER_FEE_GOLD_PLATINUM", "70000")),
    }
