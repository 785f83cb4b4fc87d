# Overview: Gate token codec and validator; pure functions over token strings.

"""
Gate Token Codec & Validator

WHY: Drivers show a short-lived token (rendered as a QR code by their app)
at the gate. The gate agent scans it and the engine decides whether the scan
may open or close a session.

WIRE FORMAT:
    PARKTRACK|<payer_id>|<vehicle_id>|<issued_at_epoch_ms>|<digest>

digest = urlsafe-base64(HMAC-SHA256(secret, "<payer_id>|<vehicle_id>|<issued_at_epoch_ms>"))
with padding stripped. The secret stays on the server.

SECURITY:
- Digest is checked before freshness: a forged token is always TAMPERED,
  even if it is also stale.
- A correctly signed but stale token is EXPIRED.
- No token is stored. Replays inside the freshness window are stopped by the
  one-ACTIVE-session-per-payer rule in session_service.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..errors import TokenExpiredError, TokenMalformedError, TokenTamperedError, ValidationError
from parktrack.time_utils import from_epoch_millis, to_epoch_millis


TOKEN_PREFIX = "PARKTRACK"
TOKEN_DELIMITER = "|"

# Validation outcomes
TOKEN_VALID = "VALID"
TOKEN_EXPIRED = "EXPIRED"
TOKEN_TAMPERED = "TAMPERED"
TOKEN_MALFORMED = "MALFORMED"

DEFAULT_FRESHNESS_SECONDS = 30
DEFAULT_CLOCK_SKEW_SECONDS = 5


@dataclass(frozen=True)
class Token:
    """Decoded gate token. Fields are as claimed; see validate_token."""
    payer_id: str
    vehicle_id: str
    issued_at_ms: int
    digest: str

    @property
    def issued_at(self) -> datetime:
        return from_epoch_millis(self.issued_at_ms)


def _secret(secret: str | None) -> bytes:
    if secret is None:
        secret = current_app.config["TOKEN_SECRET"]
    return secret.encode("utf-8")


def compute_digest(payer_id: str, vehicle_id: str, issued_at_ms: int, secret: str | None = None) -> str:
    message = TOKEN_DELIMITER.join([payer_id, vehicle_id, str(issued_at_ms)]).encode("utf-8")
    mac = hmac.new(_secret(secret), message, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(mac).decode("ascii").rstrip("=")


def _check_identifier(name: str, value: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{name} is required")
    if TOKEN_DELIMITER in value:
        raise ValidationError(f"{name} must not contain '{TOKEN_DELIMITER}'")


def encode_token(payer_id: str, vehicle_id: str, issued_at: datetime, secret: str | None = None) -> str:
    """
    Build a signed token string.

    issued_at is kept with millisecond precision.
    """
    _check_identifier("payer_id", payer_id)
    _check_identifier("vehicle_id", vehicle_id)

    issued_at_ms = to_epoch_millis(issued_at)
    digest = compute_digest(payer_id, vehicle_id, issued_at_ms, secret)
    return TOKEN_DELIMITER.join([TOKEN_PREFIX, payer_id, vehicle_id, str(issued_at_ms), digest])


def decode_token(token_string: str) -> Token:
    """
    Parse a token string without checking its digest or age.

    Raises:
        TokenMalformedError: wrong prefix, field count, empty field or
        non-numeric timestamp
    """
    if not isinstance(token_string, str) or not token_string:
        raise TokenMalformedError("Token is empty")

    parts = token_string.strip().split(TOKEN_DELIMITER)
    if len(parts) != 5 or parts[0] != TOKEN_PREFIX:
        raise TokenMalformedError("Token is not a ParkTrack gate token")

    _, payer_id, vehicle_id, issued_raw, digest = parts
    if not payer_id or not vehicle_id or not digest:
        raise TokenMalformedError("Token has empty fields")
    if not (issued_raw.isascii() and issued_raw.isdigit()):
        raise TokenMalformedError("Token timestamp is not numeric")

    return Token(
        payer_id=payer_id,
        vehicle_id=vehicle_id,
        issued_at_ms=int(issued_raw),
        digest=digest,
    )


def validate_token(
    token: Token,
    now: datetime,
    *,
    secret: str | None = None,
    freshness_seconds: int | None = None,
    clock_skew_seconds: int | None = None,
) -> str:
    """
    Check integrity, then freshness.

    Returns one of TOKEN_VALID, TOKEN_TAMPERED, TOKEN_EXPIRED.
    """
    if freshness_seconds is None:
        freshness_seconds = current_app.config.get("TOKEN_FRESHNESS_SECONDS", DEFAULT_FRESHNESS_SECONDS)
    if clock_skew_seconds is None:
        clock_skew_seconds = current_app.config.get("TOKEN_CLOCK_SKEW_SECONDS", DEFAULT_CLOCK_SKEW_SECONDS)

    expected = compute_digest(token.payer_id, token.vehicle_id, token.issued_at_ms, secret)
    if not hmac.compare_digest(expected.encode("ascii"), token.digest.encode("utf-8")):
        return TOKEN_TAMPERED

    age_ms = to_epoch_millis(now) - token.issued_at_ms
    if age_ms > freshness_seconds * 1000:
        return TOKEN_EXPIRED
    # Issued in the future beyond tolerated clock drift
    if age_ms < -clock_skew_seconds * 1000:
        return TOKEN_EXPIRED

    return TOKEN_VALID


def check_token_string(token_string: str, now: datetime, **options) -> str:
    """Like validate_token, but reports unparseable input as TOKEN_MALFORMED."""
    try:
        token = decode_token(token_string)
    except TokenMalformedError:
        return TOKEN_MALFORMED
    return validate_token(token, now, **options)


def verify_token(token_string: str, now: datetime, **options) -> Token:
    """
    Decode and validate in one step.

    Raises:
        TokenMalformedError, TokenTamperedError, TokenExpiredError
    """
    token = decode_token(token_string)
    status = validate_token(token, now, **options)
    if status == TOKEN_TAMPERED:
        raise TokenTamperedError("Token failed integrity check")
    if status == TOKEN_EXPIRED:
        raise TokenExpiredError("Token has expired. Generate a new one.")
    return token
