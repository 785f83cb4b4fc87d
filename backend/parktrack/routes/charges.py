# Overview: Flask API routes for charge records; parses input and returns JSON responses.

# backend/parktrack/routes/charges.py
"""
Charge API Routes

WHY: Cashiers settle individual sessions at the booth and billing staff run
the overdue sweep. Charge amounts themselves are never edited here.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ParkingEngineError
from ..services import payment_service


charges_bp = Blueprint("charges", __name__, url_prefix="/api/charges")


@charges_bp.get("/payers/<payer_id>")
def payer_charges_route(payer_id: str):
    """All charges for a payer, newest first. Query param limit (default 100)."""
    limit = request.args.get("limit", 100, type=int)
    charges = payment_service.get_payer_charges(payer_id, limit=limit)
    return jsonify({
        "payer_id": payer_id,
        "charges": [c.to_dict() for c in charges],
    }), 200


@charges_bp.get("/payers/<payer_id>/unpaid")
def payer_unpaid_route(payer_id: str):
    """Unpaid summary: count, totals, oldest unpaid date, charges."""
    try:
        return jsonify(payment_service.get_unpaid_summary(payer_id)), 200
    except Exception:
        current_app.logger.exception("Failed to load unpaid summary")
        return jsonify({"error": "Internal server error"}), 500


@charges_bp.post("/<int:charge_id>/pay")
def pay_charge_route(charge_id: int):
    """
    Confirm payment of a single charge.

    Request body:
    {
        "method": "CASH",
        "confirmed_by": "cashier-7",  (optional)
        "notes": "..."                (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if not data.get("method"):
            return jsonify({"error": "method required", "code": "VALIDATION_FAILED"}), 400

        charge = payment_service.confirm_charge_payment(
            charge_id=charge_id,
            method=data.get("method"),
            confirmed_by=data.get("confirmed_by"),
            notes=data.get("notes"),
        )
        return jsonify({"charge": charge.to_dict()}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm charge payment")
        return jsonify({"error": "Internal server error"}), 500


@charges_bp.post("/overdue-sweep")
def overdue_sweep_route():
    """Mark aged unpaid charges overdue and refresh affected invoices."""
    try:
        changed = payment_service.mark_overdue_charges()
        return jsonify({
            "marked": len(changed),
            "charges": [c.to_dict() for c in changed],
        }), 200
    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to run overdue sweep")
        return jsonify({"error": "Internal server error"}), 500
