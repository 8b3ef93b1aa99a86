"""
Unit tests for gateway webhook security verification
"""

import time

import pytest

from app.utils.webhook_security import (
    SIGNATURE_HEADER,
    compute_signature,
    verify_gateway_webhook_security,
    verify_hmac_signature,
    verify_timestamp,
)


@pytest.fixture
def test_secret():
    return "test-webhook-secret-for-testing-only"


@pytest.fixture
def test_payload():
    return b'{"operationId":"recv-op-1","status":"succeeded"}'


@pytest.fixture
def valid_signature(test_payload, test_secret):
    return compute_signature(test_payload, test_secret)


class TestHMACSignatureVerification:
    """Tests for HMAC signature verification"""

    def test_valid_signature_passes(self, test_payload, test_secret, valid_signature):
        is_valid, error_code, error_details = verify_hmac_signature(
            payload_body=test_payload,
            signature_header=valid_signature,
            secret=test_secret,
        )
        assert is_valid is True
        assert error_code is None
        assert error_details is None

    def test_invalid_signature_fails(self, test_payload, test_secret):
        is_valid, error_code, error_details = verify_hmac_signature(
            payload_body=test_payload,
            signature_header="invalid_signature_hex_string",
            secret=test_secret,
        )
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_SIGNATURE"
        assert error_details["received_length"] == len("invalid_signature_hex_string")

    def test_missing_signature_fails(self, test_payload, test_secret):
        is_valid, error_code, error_details = verify_hmac_signature(
            payload_body=test_payload,
            signature_header="",
            secret=test_secret,
        )
        assert is_valid is False
        assert error_code == "WEBHOOK_MISSING_HEADER"
        assert error_details["missing_header"] == SIGNATURE_HEADER

    def test_empty_secret_fails(self, test_payload, valid_signature):
        is_valid, error_code, _ = verify_hmac_signature(
            payload_body=test_payload,
            signature_header=valid_signature,
            secret="",
        )
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_SIGNATURE"

    def test_signature_covers_exact_bytes(self, test_secret, valid_signature):
        """Re-serialized JSON with different whitespace must not verify"""
        is_valid, error_code, _ = verify_hmac_signature(
            payload_body=b'{"operationId": "recv-op-1", "status": "succeeded"}',
            signature_header=valid_signature,
            secret=test_secret,
        )
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_SIGNATURE"

    def test_non_ascii_signature_header(self, test_payload, test_secret):
        is_valid, error_code, _ = verify_hmac_signature(
            payload_body=test_payload,
            signature_header="sïgnature",
            secret=test_secret,
        )
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_SIGNATURE"


class TestTimestampVerification:
    """Tests for replay protection"""

    def test_missing_timestamp_is_accepted(self):
        assert verify_timestamp(None, tolerance_seconds=300) == (True, None, None)

    def test_current_timestamp_passes(self):
        is_valid, error_code, _ = verify_timestamp(str(int(time.time())), tolerance_seconds=300)
        assert is_valid is True
        assert error_code is None

    def test_old_timestamp_fails(self):
        is_valid, error_code, error_details = verify_timestamp(str(int(time.time()) - 3600), tolerance_seconds=300)
        assert is_valid is False
        assert error_code == "WEBHOOK_TIMESTAMP_SKEW"
        assert error_details["max_skew_seconds"] == 300

    def test_future_timestamp_fails(self):
        is_valid, error_code, _ = verify_timestamp(str(int(time.time()) + 3600), tolerance_seconds=300)
        assert is_valid is False
        assert error_code == "WEBHOOK_TIMESTAMP_SKEW"

    def test_malformed_timestamp_fails(self):
        is_valid, error_code, _ = verify_timestamp("yesterday", tolerance_seconds=300)
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_TIMESTAMP"


class TestGatewayWebhookSecurity:
    """Signature and timestamp checks with the configured secret"""

    def test_configured_secret(self, test_payload):
        signature = compute_signature(test_payload, "test-gateway-webhook-secret")
        assert verify_gateway_webhook_security(test_payload, signature, str(int(time.time()))) == (True, None, None)

    def test_wrong_secret(self, test_payload, valid_signature):
        is_valid, error_code, _ = verify_gateway_webhook_security(test_payload, valid_signature)
        assert is_valid is False
        assert error_code == "WEBHOOK_INVALID_SIGNATURE"

    def test_valid_signature_with_stale_timestamp(self, test_payload):
        signature = compute_signature(test_payload, "test-gateway-webhook-secret")
        is_valid, error_code, _ = verify_gateway_webhook_security(test_payload, signature, str(int(time.time()) - 3600))
        assert is_valid is False
        assert error_code == "WEBHOOK_TIMESTAMP_SKEW"
