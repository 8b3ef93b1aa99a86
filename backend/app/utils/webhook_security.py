"""
Webhook security utilities - HMAC signature verification and replay protection
"""

import hmac
import hashlib
import time
import logging
from typing import Optional, Tuple, Dict, Any

from app.infrastructure.settings import get_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"
TIMESTAMP_HEADER = "X-Gateway-Timestamp"


class WebhookSecurityError(Exception):
    """Raised when webhook security verification fails"""
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def compute_signature(payload_body: bytes, secret: str) -> str:
    """HMAC-SHA256 over the exact raw body bytes, hex encoded"""
    return hmac.new(secret.encode("utf-8"), payload_body, hashlib.sha256).hexdigest()


def verify_hmac_signature(
    payload_body: bytes,
    signature_header: Optional[str],
    secret: str,
) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
    """
    Verify HMAC-SHA256 signature using constant-time comparison.

    The signature is computed over EXACT raw request body bytes (canonical representation).

    Args:
        payload_body: Raw request body (bytes) - EXACT bytes as received
        signature_header: Signature from X-Gateway-Signature header
        secret: Shared secret key

    Returns:
        Tuple of (is_valid, error_code, error_details)
    """
    if not secret:
        return False, "WEBHOOK_INVALID_SIGNATURE", {
            "reason": "GATEWAY_WEBHOOK_SECRET not configured",
        }

    if not signature_header:
        return False, "WEBHOOK_MISSING_HEADER", {
            "missing_header": SIGNATURE_HEADER,
        }

    expected_signature = compute_signature(payload_body, secret)

    try:
        matches = hmac.compare_digest(expected_signature, signature_header)
    except TypeError:
        matches = False

    if not matches:
        return False, "WEBHOOK_INVALID_SIGNATURE", {
            "received_length": len(signature_header),
            "body_length_bytes": len(payload_body),
        }

    return True, None, None


def verify_timestamp(
    timestamp_header: Optional[str],
    tolerance_seconds: int,
) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
    """
    Verify timestamp to prevent replay attacks.

    A missing timestamp is accepted: reconciliation is idempotent, so a
    replayed notification cannot apply twice.

    Returns:
        Tuple of (is_valid, error_code, error_details)
    """
    if not timestamp_header:
        logger.debug("No timestamp header provided - relying on idempotent reconciliation")
        return True, None, None

    try:
        timestamp = int(timestamp_header)
    except (ValueError, TypeError):
        return False, "WEBHOOK_INVALID_TIMESTAMP", {
            "received": timestamp_header,
            "expected_format": "Unix timestamp (integer as string)",
        }

    current_time = int(time.time())
    time_delta = abs(current_time - timestamp)

    if time_delta > tolerance_seconds:
        return False, "WEBHOOK_TIMESTAMP_SKEW", {
            "time_delta_seconds": time_delta,
            "max_skew_seconds": tolerance_seconds,
        }

    return True, None, None


def verify_gateway_webhook_security(
    payload_body: bytes,
    signature_header: Optional[str],
    timestamp_header: Optional[str] = None,
) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
    """
    Complete webhook security verification for payment gateway notifications.

    Performs:
    1. HMAC-SHA256 signature verification (over exact raw body bytes)
    2. Timestamp/replay protection (if timestamp provided)
    """
    settings = get_settings()

    is_valid, error_code, error_details = verify_hmac_signature(
        payload_body=payload_body,
        signature_header=signature_header,
        secret=settings.GATEWAY_WEBHOOK_SECRET,
    )
    if not is_valid:
        return False, error_code, error_details

    is_valid, error_code, error_details = verify_timestamp(
        timestamp_header=timestamp_header,
        tolerance_seconds=settings.GATEWAY_WEBHOOK_TOLERANCE_SECONDS,
    )
    if not is_valid:
        return False, error_code, error_details

    return True, None, None
