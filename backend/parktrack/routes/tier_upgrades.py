# Overview: Flask API routes for paid tier upgrades; parses input and returns JSON responses.

# backend/parktrack/routes/tier_upgrades.py
"""
Tier Upgrade API Routes

WHY: A payer's tier changes only after staff confirm the upgrade fee was
received. The request and the confirmation are separate calls.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ParkingEngineError
from ..services import payment_service


tier_upgrades_bp = Blueprint("tier_upgrades", __name__, url_prefix="/api/tier-upgrades")


@tier_upgrades_bp.get("/")
def list_tier_upgrades_route():
    """Query params: payer_id (optional), pending=1 to hide confirmed upgrades."""
    records = payment_service.list_tier_upgrades(
        payer_id=request.args.get("payer_id"),
        pending_only=request.args.get("pending", "0") == "1",
    )
    return jsonify({"tier_upgrades": [r.to_dict() for r in records]}), 200


@tier_upgrades_bp.post("/")
def request_tier_upgrade_route():
    """
    Request body:
    {
        "payer_id": "drv-001",
        "to_tier": "GOLD",
        "requested_by": "admin-1"  (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if not data.get("payer_id") or not data.get("to_tier"):
            return jsonify({"error": "payer_id and to_tier required", "code": "VALIDATION_FAILED"}), 400

        record = payment_service.request_tier_upgrade(
            payer_id=data["payer_id"],
            to_tier=data["to_tier"],
            requested_by=data.get("requested_by"),
        )
        return jsonify({"tier_upgrade": record.to_dict()}), 201

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to request tier upgrade")
        return jsonify({"error": "Internal server error"}), 500


@tier_upgrades_bp.post("/<int:record_id>/confirm")
def confirm_tier_upgrade_route(record_id: int):
    """
    Confirm the upgrade fee and activate the new tier.

    Request body:
    {
        "method": "CASH",
        "confirmed_by": "admin-1",  (optional)
        "notes": "..."              (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if not data.get("method"):
            return jsonify({"error": "method required", "code": "VALIDATION_FAILED"}), 400

        record = payment_service.confirm_tier_upgrade_payment(
            record_id=record_id,
            method=data["method"],
            confirmed_by=data.get("confirmed_by"),
            notes=data.get("notes"),
        )
        return jsonify({"tier_upgrade": record.to_dict()}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm tier upgrade")
        return jsonify({"error": "Internal server error"}), 500
