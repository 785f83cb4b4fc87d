# Overview: Flask API routes for parking session queries; parses input and returns JSON responses.

# backend/parktrack/routes/sessions.py
"""
Parking Session API Routes

Read-only views of sessions. Sessions only change through gate scans
(routes/scans.py).
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import session_service


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")


@sessions_bp.get("/active")
def list_active_route():
    """
    List ACTIVE sessions, oldest entry first.

    Query params:
    - lot_id: restrict to one lot (optional)
    """
    try:
        sessions = session_service.list_active_sessions(lot_id=request.args.get("lot_id"))
        return jsonify({
            "sessions": [s.to_dict() for s in sessions],
            "count": len(sessions),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list active sessions")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/payers/<payer_id>")
def payer_sessions_route(payer_id: str):
    """Payer's session history, newest first. Query param limit (default 50)."""
    limit = request.args.get("limit", 50, type=int)
    sessions = session_service.get_payer_sessions(payer_id, limit=limit)
    active = session_service.get_active_session(payer_id)
    return jsonify({
        "payer_id": payer_id,
        "active_session_id": active.id if active else None,
        "sessions": [s.to_dict() for s in sessions],
    }), 200


@sessions_bp.get("/<int:session_id>")
def get_session_route(session_id: int):
    session = session_service.get_session(session_id)
    if not session:
        return jsonify({"error": "Session not found", "code": "NOT_FOUND"}), 404

    payload = session.to_dict()
    payload["charge"] = session.charge.to_dict() if session.charge else None
    return jsonify({"session": payload}), 200
