# Overview: Flask API routes for monthly invoices; parses input and returns JSON responses.

# backend/parktrack/routes/invoices.py
"""
Invoice API Routes

WHY: Billing staff generate monthly invoices and record payments received
against them. Generating twice is safe; the second call refreshes totals.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ParkingEngineError
from ..services import invoice_service, payment_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/generate")
def generate_invoice_route():
    """
    Generate (or refresh) invoices for a month.

    Request body:
    {
        "year": 2025,
        "month": 3,
        "payer_id": "drv-001"  (optional; all payers with charges when omitted)
    }
    """
    try:
        data = request.get_json() or {}

        year = data.get("year")
        month = data.get("month")
        if year is None or month is None:
            return jsonify({"error": "year and month required", "code": "VALIDATION_FAILED"}), 400

        payer_id = data.get("payer_id")
        if payer_id:
            invoices = [invoice_service.generate_invoice(payer_id, year, month)]
        else:
            invoices = invoice_service.generate_invoices_for_period(year, month)

        return jsonify({"invoices": [i.to_dict() for i in invoices]}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<invoice_id>")
def get_invoice_route(invoice_id: str):
    invoice = invoice_service.get_invoice(invoice_id)
    if not invoice:
        return jsonify({"error": "Invoice not found", "code": "NOT_FOUND"}), 404

    payments = payment_service.get_payment_confirmations(invoice_id=invoice_id)
    return jsonify({
        "invoice": invoice.to_dict(),
        "payments": [p.to_dict() for p in payments],
    }), 200


@invoices_bp.get("/payers/<payer_id>")
def payer_invoices_route(payer_id: str):
    invoices = invoice_service.list_payer_invoices(payer_id)
    return jsonify({
        "payer_id": payer_id,
        "invoices": [i.to_dict() for i in invoices],
    }), 200


@invoices_bp.post("/<invoice_id>/payments")
def record_payment_route(invoice_id: str):
    """
    Record a confirmed payment against an invoice.

    Request body:
    {
        "amount_cents": 1500,
        "method": "BANK_TRANSFER",
        "confirmed_by": "admin-1",  (optional)
        "notes": "..."              (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if data.get("amount_cents") is None or not data.get("method"):
            return jsonify({"error": "amount_cents and method required", "code": "VALIDATION_FAILED"}), 400

        invoice = payment_service.record_payment(
            invoice_id=invoice_id,
            amount_cents=data.get("amount_cents"),
            method=data.get("method"),
            confirmed_by=data.get("confirmed_by"),
            notes=data.get("notes"),
        )
        current_app.logger.info(
            "Payment recorded on %s: %s cents, status %s",
            invoice_id, data.get("amount_cents"), invoice.payment_status,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except ParkingEngineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500
