# Overview: Flask API routes for gate scans and token issuing; parses input and returns JSON responses.

# backend/parktrack/routes/scans.py
"""
Gate Scan API Routes

WHY: Gate agents scan a driver's token and the engine opens or closes the
driver's session. The driver app asks the token endpoint for a fresh token
every few seconds and renders it as a QR code.

DESIGN:
- POST /api/scans/ lets the engine pick entry or exit from the payer's state
- /entry and /exit force a direction for gates that are one-way
- agent_id travels in the body; authentication happens in front of the engine

ERRORS: engine errors come back as {"error", "code"} with the status code the
error class carries (401 for TAMPERED/EXPIRED, 409 for CONFLICT, ...).
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ParkingEngineError, NotFoundError, ValidationError
from ..services import session_service, token_service, registry_service
from parktrack.time_utils import utcnow, to_utc_z


scans_bp = Blueprint("scans", __name__, url_prefix="/api/scans")
tokens_bp = Blueprint("tokens", __name__, url_prefix="/api/tokens")


# =============================================================================
# GATE SCANS
# =============================================================================

@scans_bp.post("/")
def scan_route():
    """
    Process a gate scan, entry or exit depending on the payer's state.

    Request body:
    {
        "token": "PARKTRACK|...",
        "lot_id": "LOT-A",
        "agent_id": "gate-3",
        "rate_type": "VIP"  (optional, entry only)
    }

    Returns:
        201: session opened (action ENTRY)
        200: session closed and charged (action EXIT)
    """
    try:
        data = request.get_json() or {}

        token = data.get("token")
        lot_id = data.get("lot_id")
        agent_id = data.get("agent_id")

        if not all([token, lot_id, agent_id]):
            return jsonify({"error": "token, lot_id, and agent_id required", "code": "VALIDATION_FAILED"}), 400

        result = session_service.process_scan(
            token_string=token,
            lot_id=lot_id,
            agent_id=agent_id,
            rate_type=data.get("rate_type"),
            ip_address=request.remote_addr,
        )

        status = 201 if result.action == session_service.SCAN_ACTION_ENTRY else 200
        return jsonify(result.to_dict()), status

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process scan")
        return jsonify({"error": "Internal server error"}), 500


@scans_bp.post("/entry")
def entry_route():
    """Open a session. Fails 409 if the payer is already parked."""
    try:
        data = request.get_json() or {}

        token = data.get("token")
        lot_id = data.get("lot_id")
        agent_id = data.get("agent_id")

        if not all([token, lot_id, agent_id]):
            return jsonify({"error": "token, lot_id, and agent_id required", "code": "VALIDATION_FAILED"}), 400

        session = session_service.open_session(
            token_string=token,
            lot_id=lot_id,
            agent_id=agent_id,
            rate_type=data.get("rate_type"),
            ip_address=request.remote_addr,
        )
        return jsonify({"session": session.to_dict()}), 201

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process entry scan")
        return jsonify({"error": "Internal server error"}), 500


@scans_bp.post("/exit")
def exit_route():
    """
    Close the payer's session and price it.

    Returns 404 when nothing is open (including a replayed exit) and 422 when
    the lot has no usable rate policy; the session then stays ACTIVE and is
    queued in the billing backlog.
    """
    try:
        data = request.get_json() or {}

        token = data.get("token")
        agent_id = data.get("agent_id")

        if not all([token, agent_id]):
            return jsonify({"error": "token and agent_id required", "code": "VALIDATION_FAILED"}), 400

        session, charge = session_service.close_session(
            token_string=token,
            agent_id=agent_id,
            ip_address=request.remote_addr,
        )
        return jsonify({"session": session.to_dict(), "charge": charge.to_dict()}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process exit scan")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TOKEN ISSUING
# =============================================================================

@tokens_bp.post("/")
def issue_token_route():
    """
    Issue a fresh gate token for a payer's vehicle.

    Stands in for the driver app. The token is valid for
    TOKEN_FRESHNESS_SECONDS from issued_at.

    Request body:
    {
        "payer_id": "drv-001",
        "vehicle_id": "ABC123"
    }
    """
    try:
        data = request.get_json() or {}

        payer_id = data.get("payer_id")
        vehicle_id = data.get("vehicle_id")

        if not all([payer_id, vehicle_id]):
            return jsonify({"error": "payer_id and vehicle_id required", "code": "VALIDATION_FAILED"}), 400

        vehicle = registry_service.get_vehicle(vehicle_id)
        if not vehicle or not vehicle.is_active:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")
        if vehicle.payer_id != payer_id:
            raise ValidationError(f"Vehicle {vehicle_id} is not registered to payer {payer_id}")

        issued_at = utcnow()
        token = token_service.encode_token(payer_id, vehicle.id, issued_at)

        return jsonify({
            "token": token,
            "issued_at": to_utc_z(issued_at),
            "expires_in_seconds": current_app.config["TOKEN_FRESHNESS_SECONDS"],
        }), 201

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to issue token")
        return jsonify({"error": "Internal server error"}), 500
