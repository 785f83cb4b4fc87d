"""
Gate token tests.

Verifies:
- Encode/decode round trip keeps every field
- Freshness window boundaries (VALID at issue, EXPIRED past the window)
- Integrity is checked before freshness
- Malformed strings never reach validation
"""

from datetime import timedelta

import pytest

from parktrack.errors import TokenExpiredError, TokenMalformedError, TokenTamperedError, ValidationError
from parktrack.services import token_service
from parktrack.services.token_service import (
    TOKEN_EXPIRED,
    TOKEN_MALFORMED,
    TOKEN_TAMPERED,
    TOKEN_VALID,
)
from parktrack.time_utils import to_epoch_millis

from conftest import TEST_SECRET, T0


OPTIONS = {"secret": TEST_SECRET, "freshness_seconds": 30, "clock_skew_seconds": 5}


def _token(payer_id="drv-001", vehicle_id="ABC123", issued_at=T0):
    return token_service.encode_token(payer_id, vehicle_id, issued_at, secret=TEST_SECRET)


# =============================================================================
# CODEC
# =============================================================================


class TestCodec:
    def test_round_trip(self):
        token = token_service.decode_token(_token())
        assert token.payer_id == "drv-001"
        assert token.vehicle_id == "ABC123"
        assert token.issued_at_ms == to_epoch_millis(T0)
        assert token.issued_at == T0

    def test_wire_format(self):
        parts = _token().split("|")
        assert parts[0] == "PARKTRACK"
        assert parts[1:4] == ["drv-001", "ABC123", str(to_epoch_millis(T0))]
        assert "=" not in parts[4]

    def test_millisecond_precision(self):
        issued = T0 + timedelta(microseconds=123456)
        token = token_service.decode_token(_token(issued_at=issued))
        assert token.issued_at == T0 + timedelta(milliseconds=123)

    def test_different_secrets_give_different_digests(self):
        a = token_service.compute_digest("drv-001", "ABC123", 1, secret="one")
        b = token_service.compute_digest("drv-001", "ABC123", 1, secret="two")
        assert a != b

    @pytest.mark.parametrize("payer_id,vehicle_id", [
        ("", "ABC123"),
        ("drv-001", ""),
        ("drv|001", "ABC123"),
        ("drv-001", "ABC|123"),
    ])
    def test_encode_rejects_bad_identifiers(self, payer_id, vehicle_id):
        with pytest.raises(ValidationError):
            token_service.encode_token(payer_id, vehicle_id, T0, secret=TEST_SECRET)

    @pytest.mark.parametrize("raw", [
        "",
        "garbage",
        "OTHER|drv-001|ABC123|1|digest",
        "PARKTRACK|drv-001|ABC123|1",
        "PARKTRACK|drv-001|ABC123|1|digest|extra",
        "PARKTRACK||ABC123|1|digest",
        "PARKTRACK|drv-001|ABC123|notanumber|digest",
        "PARKTRACK|drv-001|ABC123|-5|digest",
        "PARKTRACK|drv-001|ABC123|1|",
    ])
    def test_decode_rejects_malformed(self, raw):
        with pytest.raises(TokenMalformedError):
            token_service.decode_token(raw)


# =============================================================================
# VALIDATION
# =============================================================================


class TestValidation:
    def test_valid_at_issue_time(self):
        token = token_service.decode_token(_token())
        assert token_service.validate_token(token, T0, **OPTIONS) == TOKEN_VALID

    def test_valid_at_window_edge(self):
        token = token_service.decode_token(_token())
        assert token_service.validate_token(token, T0 + timedelta(seconds=30), **OPTIONS) == TOKEN_VALID

    def test_expired_after_window(self):
        token = token_service.decode_token(_token())
        assert token_service.validate_token(token, T0 + timedelta(seconds=31), **OPTIONS) == TOKEN_EXPIRED

    def test_small_future_skew_tolerated(self):
        token = token_service.decode_token(_token())
        assert token_service.validate_token(token, T0 - timedelta(seconds=4), **OPTIONS) == TOKEN_VALID

    def test_far_future_token_expired(self):
        token = token_service.decode_token(_token())
        assert token_service.validate_token(token, T0 - timedelta(seconds=10), **OPTIONS) == TOKEN_EXPIRED

    def test_tampered_field(self):
        forged = _token().replace("drv-001", "drv-002")
        token = token_service.decode_token(forged)
        assert token_service.validate_token(token, T0, **OPTIONS) == TOKEN_TAMPERED

    def test_tampered_wins_over_expired(self):
        forged = _token().replace("ABC123", "XYZ999")
        token = token_service.decode_token(forged)
        assert token_service.validate_token(token, T0 + timedelta(hours=1), **OPTIONS) == TOKEN_TAMPERED

    def test_wrong_secret_is_tampered(self):
        token = token_service.decode_token(_token())
        options = dict(OPTIONS, secret="someone-else")
        assert token_service.validate_token(token, T0, **options) == TOKEN_TAMPERED

    def test_every_single_char_mutation_is_rejected(self):
        original = _token()
        for i, ch in enumerate(original):
            replacement = "x" if ch != "x" else "y"
            mutated = original[:i] + replacement + original[i + 1:]
            status = token_service.check_token_string(mutated, T0, **OPTIONS)
            assert status in (TOKEN_TAMPERED, TOKEN_MALFORMED), f"position {i} accepted"

    def test_non_ascii_digest_is_tampered(self):
        original = _token()
        mutated = original[:-1] + "é"
        assert token_service.check_token_string(mutated, T0, **OPTIONS) == TOKEN_TAMPERED

    def test_check_token_string_reports_malformed(self):
        assert token_service.check_token_string("nope", T0, **OPTIONS) == TOKEN_MALFORMED


# =============================================================================
# VERIFY (RAISING FORM) AND APP CONFIG
# =============================================================================


class TestVerify:
    def test_verify_returns_token(self):
        token = token_service.verify_token(_token(), T0, **OPTIONS)
        assert token.payer_id == "drv-001"

    def test_verify_raises_expired(self):
        with pytest.raises(TokenExpiredError):
            token_service.verify_token(_token(), T0 + timedelta(minutes=5), **OPTIONS)

    def test_verify_raises_tampered(self):
        with pytest.raises(TokenTamperedError):
            token_service.verify_token(_token().replace("drv-001", "drv-009"), T0, **OPTIONS)

    def test_verify_raises_malformed(self):
        with pytest.raises(TokenMalformedError):
            token_service.verify_token("PARKTRACK|only|three", T0, **OPTIONS)

    def test_uses_app_config(self, app):
        with app.app_context():
            raw = token_service.encode_token("drv-001", "ABC123", T0)
            assert token_service.verify_token(raw, T0 + timedelta(seconds=29)).vehicle_id == "ABC123"
            with pytest.raises(TokenExpiredError):
                token_service.verify_token(raw, T0 + timedelta(seconds=31))
