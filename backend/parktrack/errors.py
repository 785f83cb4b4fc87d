# Overview: Engine exception taxonomy shared by services, routes and the CLI.

"""
Every engine failure is a ParkingEngineError carrying a stable `code`
(surfaced to gate agents and admin tools) and the HTTP status the API uses.

Nothing in the engine retries these. Routes return them as JSON; the CLI
prints them.
"""


class ParkingEngineError(Exception):
    """Base class for session and billing engine errors."""
    code = "ENGINE_ERROR"
    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ValidationError(ParkingEngineError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_FAILED"


class TokenMalformedError(ParkingEngineError):
    """Token string cannot be parsed. Not retryable with the same token."""
    code = "MALFORMED"


class TokenTamperedError(ParkingEngineError):
    """Token digest does not match its fields."""
    code = "TAMPERED"
    status_code = 401


class TokenExpiredError(ParkingEngineError):
    """Token is outside the freshness window. Rescan fixes it."""
    code = "EXPIRED"
    status_code = 401


class ConflictError(ParkingEngineError):
    """Entry attempted while the payer already has an ACTIVE session."""
    code = "CONFLICT"
    status_code = 409


class NotFoundError(ParkingEngineError):
    """Missing ACTIVE session, rate policy, or registry record."""
    code = "NOT_FOUND"
    status_code = 404


class ChargeComputationError(ParkingEngineError):
    """Session could not be priced; escalated to the billing backlog."""
    code = "CHARGE_COMPUTATION_FAILED"
    status_code = 422


class PaymentError(ParkingEngineError):
    """Raised for payment operation errors."""
    code = "PAYMENT_FAILED"
