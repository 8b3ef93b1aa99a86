"""
LNURL error taxonomy

Every error carries the human ``reason`` that is surfaced to the wallet in the
``{"status": "ERROR", "reason": ...}`` envelope. Internal detail belongs in the
logs, never in ``reason``.
"""


class LnurlError(Exception):
    """Base class for LNURL failures surfaced on the wire"""

    default_reason = "An error occurred while processing the withdrawal"

    def __init__(self, reason: str = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def to_response(self) -> dict:
        return {"status": "ERROR", "reason": self.reason}


class ValidationError(LnurlError):
    """Malformed caller input (k1, tag, invoice, amount)"""
    default_reason = "Invalid request"


class NotFoundOrExpired(LnurlError):
    """No matching withdrawal point, or it is past its expiry"""
    default_reason = "Withdrawal request not found or expired"


class AmountMismatch(LnurlError):
    """Requested bound disagrees with the reserved amount"""
    default_reason = "maxWithdrawable exceeds expected amount"


class GatewayFailure(LnurlError):
    """Payment rejected by the Lightning backend; reason is the gateway message"""
    default_reason = "Payment failed"


class InternalError(LnurlError):
    """Store unavailable or unexpected fault"""


class InvalidEncoding(ValueError):
    """A token is not a well-formed lowercase bech32 LNURL"""
