# backend/parktrack/routes/system.py
"""
System health and version endpoints.

Health checks the database and reports the billing backlog so operators can
see sessions stuck behind a broken rate configuration.
"""

import platform

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ParkingSession, RatePolicy, BillingBacklogItem
from parktrack.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

# Worst status wins
STATUS_ORDER = ["healthy", "degraded", "unhealthy"]


def _database_check() -> dict:
    try:
        return {
            "status": "healthy",
            "details": {
                "active_sessions": db.session.query(ParkingSession).filter_by(status="ACTIVE").count(),
                "active_rate_policies": db.session.query(RatePolicy).filter_by(is_active=True).count(),
            },
        }
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Database error"}


def _backlog_check() -> dict:
    """Open items mean closes fail to price. Scans still work, so degraded."""
    try:
        open_items = db.session.query(BillingBacklogItem).filter_by(status="OPEN").count()
    except SQLAlchemyError:
        current_app.logger.exception("Billing backlog health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Billing backlog error"}

    check = {"status": "degraded" if open_items else "healthy", "details": {"open_items": open_items}}
    if open_items:
        check["warning"] = f"{open_items} session(s) waiting on rate configuration"
    return check


@system_bp.get("/health")
def health():
    """200 when healthy or degraded, 503 when a check is unhealthy."""
    checks = {
        "database": _database_check(),
        "billing_backlog": _backlog_check(),
    }
    status = max((c["status"] for c in checks.values()), key=STATUS_ORDER.index)

    return {
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }, 503 if status == "unhealthy" else 200


@system_bp.get("/version")
def version():
    """Build and pricing-clock settings for deployment debugging. No secrets."""
    from parktrack import __version__

    config = current_app.config
    return {
        "api_version": __version__,
        "environment": "development" if current_app.debug else "production",
        "python_version": platform.python_version(),
        "server_time": to_utc_z(utcnow()),
        "token_freshness_seconds": config["TOKEN_FRESHNESS_SECONDS"],
        "overdue_grace_days": config["OVERDUE_GRACE_DAYS"],
    }
