"""
Error Classification Tests
Provider error codes and HTTP statuses map onto the closed ErrorKind set
"""

import pytest

from services.errors import (
    DeploymentTimeoutError, ErrorKind, ExternalServiceError, classify_cloudflare_errors,
    classify_vercel_error, first_error_message, kind_from_status,
)


class TestErrorClassification:
    """Test provider error classification"""

    @pytest.mark.parametrize("code,expected", [
        (1061, ErrorKind.ALREADY_EXISTS),
        (81053, ErrorKind.RECORD_CONFLICT),
        (10000, ErrorKind.AUTH),
        (971, ErrorKind.RATE_LIMITED),
        (81044, ErrorKind.NOT_FOUND),
    ])
    def test_cloudflare_codes(self, code, expected):
        """Test documented Cloudflare codes classify to their kind"""
        assert classify_cloudflare_errors([{'code': code, 'message': 'x'}], 400) == expected

    def test_cloudflare_first_known_code_wins(self):
        """Test unknown codes are skipped in favour of the first known one"""
        errors = [{'code': 'abc'}, {'code': 123456}, {'code': 1097}]
        assert classify_cloudflare_errors(errors, 400) == ErrorKind.ALREADY_EXISTS

    def test_cloudflare_falls_back_to_status(self):
        """Test unknown codes fall back to the HTTP status"""
        assert classify_cloudflare_errors([{'code': 999999}], 503) == ErrorKind.UNAVAILABLE
        assert classify_cloudflare_errors([], 200) == ErrorKind.UNKNOWN

    def test_vercel_codes(self):
        """Test Vercel error codes take precedence over the status"""
        assert classify_vercel_error({'code': 'domain_already_in_use'}, 409) == ErrorKind.IN_USE_BY_OTHER_PROJECT
        assert classify_vercel_error({'code': 'forbidden'}, 403) == ErrorKind.AUTH
        assert classify_vercel_error({'code': 'something_new'}, 429) == ErrorKind.RATE_LIMITED
        assert classify_vercel_error(None, 404) == ErrorKind.NOT_FOUND

    def test_kind_from_status(self):
        """Test HTTP status mapping"""
        assert kind_from_status(None) == ErrorKind.UNAVAILABLE
        assert kind_from_status(401) == ErrorKind.AUTH
        assert kind_from_status(409) == ErrorKind.ALREADY_EXISTS
        assert kind_from_status(422) == ErrorKind.INVALID_REQUEST
        assert kind_from_status(502) == ErrorKind.UNAVAILABLE

    def test_first_error_message(self):
        """Test the first non-empty message is used"""
        assert first_error_message([{'code': 1}, {'message': 'zone exists'}]) == 'zone exists'
        assert first_error_message([], 'fallback') == 'fallback'


class TestErrorTypes:
    """Test error payloads"""

    def test_timeout_message(self):
        """Test the timeout message names elapsed time and last state"""
        error = DeploymentTimeoutError(0.05, 'BUILDING')
        assert "timed out" in str(error)
        assert "0.1s" in str(error) or "0.0s" in str(error)
        assert "BUILDING" in str(error)

    def test_external_service_error_details(self):
        """Test external errors carry service, kind and details"""
        error = ExternalServiceError("in use", 'vercel', ErrorKind.IN_USE_BY_OTHER_PROJECT,
                                     details={'project_id': 'prj_1'})
        assert error.service == 'vercel'
        assert error.kind == ErrorKind.IN_USE_BY_OTHER_PROJECT
        assert error.details['project_id'] == 'prj_1'
        assert 'in_use_by_other_project' in repr(error)
