"""Tests for partner failure translation."""

import pytest

from src.errors.partner_translation import (
    TRANSPORT_ERROR_CODE,
    error_code_for_status,
    is_permanent_failure,
    translate_partner_error,
)


class TestErrorCodeForStatus:
    """Status code to registry code mapping."""

    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "E-3003"),
            (404, "E-3003"),
            (422, "E-3003"),
            (429, "E-3003"),
            (401, "E-5001"),
            (403, "E-5001"),
            (500, "E-3001"),
            (503, "E-3001"),
            (None, TRANSPORT_ERROR_CODE),
        ],
    )
    def test_mapping(self, status, code):
        assert error_code_for_status(status) == code


class TestPermanence:
    """Client-class failures are permanent, everything else transient."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422, 429, 499])
    def test_client_errors_permanent(self, status):
        assert is_permanent_failure(status) is True

    @pytest.mark.parametrize("status", [500, 502, 503, 504, None])
    def test_server_and_transport_transient(self, status):
        assert is_permanent_failure(status) is False


class TestTranslatePartnerError:
    """Full translation to (code, message, permanent)."""

    def test_rejection_includes_partner_message(self):
        code, message, permanent = translate_partner_error(422, "Invalid bizStep")
        assert code == "E-3003"
        assert "Invalid bizStep" in message
        assert permanent is True

    def test_server_error(self):
        code, message, permanent = translate_partner_error(503, "maintenance window")
        assert code == "E-3001"
        assert "maintenance window" in message
        assert permanent is False

    def test_transport_error(self):
        code, message, permanent = translate_partner_error(None, "ConnectError: refused")
        assert code == "E-3004"
        assert "refused" in message
        assert permanent is False

    def test_missing_message_falls_back_to_status(self):
        _, message, _ = translate_partner_error(500, None)
        assert "HTTP 500" in message
