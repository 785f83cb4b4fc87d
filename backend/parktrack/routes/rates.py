# Overview: Flask API routes for rate policy administration; parses input and returns JSON responses.

# backend/parktrack/routes/rates.py
"""
Rate Policy API Routes

WHY: Administrators price each lot per rate-type. A PUT replaces the active
policy for the pair; the previous one is kept (inactive) for charges that
reference it.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ParkingEngineError
from ..services import rate_service, registry_service, charge_calculator


rates_bp = Blueprint("rates", __name__, url_prefix="/api/rates")


@rates_bp.get("/lots/<lot_id>")
def list_lot_rates_route(lot_id: str):
    """
    List a lot's policies.

    Query params:
    - include_inactive: include replaced policies (default: false)
    """
    try:
        registry_service.require_lot(lot_id)
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        policies = rate_service.list_rate_policies(lot_id, include_inactive=include_inactive)
        return jsonify({
            "lot_id": lot_id,
            "policies": [p.to_dict() for p in policies],
        }), 200
    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list rate policies")
        return jsonify({"error": "Internal server error"}), 500


@rates_bp.put("/lots/<lot_id>/<rate_type>")
def set_rate_route(lot_id: str, rate_type: str):
    """
    Replace the active policy for (lot, rate-type).

    Request body (cents):
    {
        "base_price_per_hour_cents": 1000,
        "max_daily_price_cents": 5000,
        "normal_rate_cents": 0,    (optional, 0 = use base)
        "gold_rate_cents": 800,    (optional)
        "platinum_rate_cents": 0   (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if "base_price_per_hour_cents" not in data or "max_daily_price_cents" not in data:
            return jsonify({
                "error": "base_price_per_hour_cents and max_daily_price_cents required",
                "code": "VALIDATION_FAILED",
            }), 400

        policy = rate_service.set_rate_policy(
            lot_id=lot_id,
            rate_type=rate_type,
            base_price_per_hour_cents=data.get("base_price_per_hour_cents"),
            max_daily_price_cents=data.get("max_daily_price_cents"),
            normal_rate_cents=data.get("normal_rate_cents", 0),
            gold_rate_cents=data.get("gold_rate_cents", 0),
            platinum_rate_cents=data.get("platinum_rate_cents", 0),
        )
        current_app.logger.info("Rate policy %s active for %s/%s", policy.id, lot_id, policy.rate_type)
        return jsonify({"policy": policy.to_dict()}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set rate policy")
        return jsonify({"error": "Internal server error"}), 500


@rates_bp.post("/<int:policy_id>/deactivate")
def deactivate_rate_route(policy_id: int):
    try:
        policy = rate_service.deactivate_rate_policy(policy_id)
        return jsonify({"policy": policy.to_dict()}), 200
    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate rate policy")
        return jsonify({"error": "Internal server error"}), 500


@rates_bp.post("/quote")
def quote_route():
    """
    Price a duration without touching any session.

    Request body:
    {
        "lot_id": "LOT-A",
        "rate_type": "NORMAL",     (optional)
        "duration_minutes": 90,
        "payer_id": "drv-001"      (or "tier": "GOLD")
    }
    """
    try:
        data = request.get_json() or {}

        lot_id = data.get("lot_id")
        duration_minutes = data.get("duration_minutes")
        if not lot_id or duration_minutes is None:
            return jsonify({"error": "lot_id and duration_minutes required", "code": "VALIDATION_FAILED"}), 400

        if data.get("payer_id"):
            tier = registry_service.get_payer_tier(data["payer_id"])
        else:
            tier = registry_service.normalize_tier(data.get("tier") or registry_service.TIER_NORMAL)

        rate_type = rate_service.normalize_rate_type(data.get("rate_type"))
        policy = rate_service.lookup_rate_policy(lot_id, rate_type)

        breakdown = charge_calculator.calculate_breakdown(
            duration_minutes,
            tier,
            policy,
            **charge_calculator.pricing_options_from_config(),
        )

        return jsonify({
            "lot_id": lot_id,
            "rate_type": rate_type,
            "tier": tier,
            "rate_policy_id": policy.id,
            "duration_minutes": duration_minutes,
            "billable_hours": str(breakdown.billable_hours),
            "hourly_rate_cents": str(breakdown.hourly_rate_cents),
            "multiplier": str(breakdown.multiplier),
            "was_capped": breakdown.was_capped,
            "amount_cents": charge_calculator.to_cents(breakdown.amount_cents),
        }), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote charge")
        return jsonify({"error": "Internal server error"}), 500
