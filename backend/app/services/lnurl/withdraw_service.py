"""
LNURL-withdraw handshake coordinator

Two-step protocol (LUD-03):

1. first step - the wallet presents k1 (and the parameters it decoded from
   the LNURL) and receives the withdrawRequest discovery payload. Pure read.
2. second step - the wallet presents k1 and a BOLT11 invoice (pr); the
   reserved withdrawal is paid to that invoice.

The ledger is the only source of truth for withdrawal points. The
PENDING -> PROCESSING compare-and-set is committed before the gateway is
called; it is what prevents a double payment when callbacks are delivered
twice or concurrently to different replicas.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.transactions.models import Transaction, TransactionStatus, TransactionType
from app.infrastructure.settings import Settings, get_settings
from app.services.gateway import GatewayError, PaymentGateway
from app.services.lnurl.common import encode_lnurl, fiat_to_msats, generate_k1
from app.services.lnurl.exceptions import (
    AmountMismatch,
    GatewayFailure,
    InternalError,
    LnurlError,
    NotFoundOrExpired,
    ValidationError,
)
from app.services.wallet_helpers import get_available_balance_msats, transition_status

logger = logging.getLogger(__name__)

WITHDRAW_REQUEST_TAG = "withdrawRequest"
MIN_K1_LENGTH = 10

# Wire reasons
REASON_INVALID_K1 = "Invalid or missing k1 parameter"
REASON_INVALID_TAG = "Invalid tag parameter for LNURL withdraw"
REASON_NOT_FOUND = "Withdrawal request not found or expired"
REASON_EXPIRED = "Withdrawal request has expired"
REASON_NO_LONGER_VALID = "LNURL withdrawal is now invalid or expired"
REASON_AMOUNT_MISMATCH = "maxWithdrawable exceeds expected amount"
REASON_INVALID_INVOICE = "Invalid lightning invoice"
REASON_INVOICE_TOO_LARGE = "Invoice amount exceeds withdrawable amount"
REASON_INVOICE_TOO_SMALL = "Invoice amount is below minWithdrawable"
REASON_GENERIC = "An error occurred while processing the withdrawal"


@dataclass(frozen=True)
class WithdrawalPoint:
    """A freshly reserved LNURL withdrawal point"""
    transaction_id: str
    k1: str
    lnurl: str
    callback: str
    expires_at: datetime
    max_withdrawable_msats: int
    min_withdrawable_msats: int
    default_description: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_msats(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        parsed = int(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name} parameter")
    if parsed < 0:
        raise ValidationError(f"Invalid {name} parameter")
    return parsed


class LnurlWithdrawService:
    """Coordinates withdrawal-point creation and the two-step handshake"""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self._now = now

    # ------------------------------------------------------------------
    # Withdrawal point creation
    # ------------------------------------------------------------------

    def create_withdrawal_point(
        self,
        *,
        user_id: str,
        amount_msats: Optional[int] = None,
        amount_fiat: Optional[Any] = None,
        rate: Optional[Any] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> WithdrawalPoint:
        """
        Reserve part of a user's balance behind a fresh k1.

        Either amount_msats, or amount_fiat together with rate (fiat per BTC),
        must be given. Creates a PENDING WITHDRAW transaction carrying the
        withdrawal point and returns the bech32 LNURL the wallet should scan.

        Raises:
            ValidationError: missing/invalid amount or insufficient balance
        """
        if amount_msats is None:
            if amount_fiat is None or rate is None:
                raise ValidationError("Either amount_msats or amount_fiat with rate is required")
            try:
                amount_msats = fiat_to_msats(amount_fiat, rate)
            except (ArithmeticError, ValueError) as e:
                raise ValidationError("Invalid fiat amount or rate") from e

        amount_msats = int(amount_msats)
        if amount_msats <= 0:
            raise ValidationError("Withdrawal amount must be positive")

        available = get_available_balance_msats(self.db, user_id)
        if amount_msats > available:
            logger.info(
                "Withdrawal point rejected: insufficient balance",
                extra={"user_id": user_id, "amount_msats": amount_msats, "available_msats": available},
            )
            raise ValidationError("Insufficient balance for withdrawal")

        k1 = generate_k1()
        expires_at = self._now() + timedelta(seconds=self.settings.LNURL_WITHDRAW_EXPIRY_SECONDS)
        min_withdrawable = min(self.settings.LNURL_MIN_WITHDRAWABLE_MSATS, amount_msats)
        default_description = description or self.settings.LNURL_DEFAULT_DESCRIPTION
        callback = self.settings.lnurl_withdraw_callback_url

        transaction = Transaction(
            user_id=user_id,
            type=TransactionType.WITHDRAW,
            status=TransactionStatus.PENDING,
            amount_msats=amount_msats,
            amount_fiat=amount_fiat,
            reference=reference or default_description,
            lightning={
                "k1": k1,
                "expiresAt": expires_at.isoformat(),
                "maxWithdrawableMsats": amount_msats,
                "minWithdrawableMsats": min_withdrawable,
                "defaultDescription": default_description,
            },
            lnurl_k1=k1,
            lnurl_expires_at=expires_at,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)

        query = urlencode({
            "tag": WITHDRAW_REQUEST_TAG,
            "k1": k1,
            "callback": callback,
            "maxWithdrawable": amount_msats,
            "minWithdrawable": min_withdrawable,
            "defaultDescription": default_description,
        })
        lnurl = encode_lnurl(f"{callback}?{query}")

        logger.info(
            "Created LNURL withdrawal point",
            extra={"transaction_id": str(transaction.id), "user_id": user_id, "amount_msats": amount_msats},
        )

        return WithdrawalPoint(
            transaction_id=str(transaction.id),
            k1=k1,
            lnurl=lnurl,
            callback=callback,
            expires_at=expires_at,
            max_withdrawable_msats=amount_msats,
            min_withdrawable_msats=min_withdrawable,
            default_description=default_description,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_withdrawal(self, k1: str) -> Optional[Transaction]:
        """Withdrawal transaction owning ``k1`` (any status), or None"""
        return self.db.execute(
            select(Transaction).where(
                Transaction.lnurl_k1 == k1,
                Transaction.type == TransactionType.WITHDRAW,
            )
        ).scalar_one_or_none()

    def _is_expired(self, transaction: Transaction) -> bool:
        expires_at = _as_utc(transaction.lnurl_expires_at)
        return expires_at is not None and expires_at <= self._now()

    @staticmethod
    def _validate_k1(k1: Optional[str]) -> str:
        if not isinstance(k1, str) or len(k1) < MIN_K1_LENGTH:
            raise ValidationError(REASON_INVALID_K1)
        return k1

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def first_step(
        self,
        *,
        k1: Optional[str],
        tag: Optional[str],
        callback: Optional[str] = None,
        max_withdrawable: Any = None,
        min_withdrawable: Any = None,
        default_description: Optional[str] = None,
        pr: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Answer withdrawRequest discovery for ``k1``.

        Caller-supplied parameters are echoed back unchanged; missing ones are
        filled from the stored withdrawal point.

        Raises:
            ValidationError: bad k1 / tag / amount parameter
            NotFoundOrExpired: no pending point for k1, or it expired
            AmountMismatch: maxWithdrawable differs from the reserved amount
        """
        k1 = self._validate_k1(k1)
        if tag != WITHDRAW_REQUEST_TAG and not pr:
            raise ValidationError(REASON_INVALID_TAG)

        max_msats = _parse_msats(max_withdrawable, "maxWithdrawable")
        min_msats = _parse_msats(min_withdrawable, "minWithdrawable")

        transaction = self.find_withdrawal(k1)
        if transaction is None:
            raise NotFoundOrExpired(REASON_NOT_FOUND)
        if transaction.status != TransactionStatus.PENDING:
            raise NotFoundOrExpired(REASON_NO_LONGER_VALID)
        if self._is_expired(transaction):
            raise NotFoundOrExpired(REASON_EXPIRED)

        point = transaction.withdrawal_point or {}
        expected = transaction.max_withdrawable_msats
        if max_msats is not None and max_msats != expected:
            logger.warning(
                "LNURL maxWithdrawable mismatch",
                extra={"transaction_id": str(transaction.id), "expected_msats": expected, "requested_msats": max_msats},
            )
            raise AmountMismatch(REASON_AMOUNT_MISMATCH)

        return {
            "tag": WITHDRAW_REQUEST_TAG,
            "callback": callback or self.settings.lnurl_withdraw_callback_url,
            "k1": k1,
            "defaultDescription": (
                default_description
                if default_description is not None
                else point.get("defaultDescription", self.settings.LNURL_DEFAULT_DESCRIPTION)
            ),
            "minWithdrawable": (
                min_msats
                if min_msats is not None
                else int(point.get("minWithdrawableMsats", self.settings.LNURL_MIN_WITHDRAWABLE_MSATS))
            ),
            "maxWithdrawable": max_msats if max_msats is not None else expected,
        }

    def second_step(self, *, k1: Optional[str], pr: Optional[str]) -> Dict[str, str]:
        """
        Pay the reserved withdrawal to invoice ``pr``.

        Raises:
            ValidationError: bad k1, undecodable invoice, invoice below minimum
            NotFoundOrExpired: unknown k1, point expired, or no longer PENDING
            AmountMismatch: invoice larger than the reserved amount
            GatewayFailure: gateway rejected the payment (message verbatim). The
                point reopens only when the gateway certainly did not pay; an
                unknown outcome leaves it PROCESSING for reconciliation
            InternalError: gateway raised something unexpected
        """
        k1 = self._validate_k1(k1)
        if not isinstance(pr, str) or not pr.strip():
            raise ValidationError(REASON_INVALID_INVOICE)
        invoice = pr.strip()

        transaction = self.find_withdrawal(k1)
        if transaction is None:
            raise NotFoundOrExpired(REASON_NOT_FOUND)
        if transaction.status != TransactionStatus.PENDING:
            raise NotFoundOrExpired(REASON_NO_LONGER_VALID)
        if self._is_expired(transaction):
            raise NotFoundOrExpired(REASON_EXPIRED)

        transaction_id = transaction.id
        point = dict(transaction.withdrawal_point or {})
        max_msats = transaction.max_withdrawable_msats
        min_msats = int(point.get("minWithdrawableMsats", 0))

        try:
            decoded = self.gateway.decode(invoice)
        except GatewayError as e:
            logger.info(
                "Rejected undecodable invoice",
                extra={"transaction_id": str(transaction_id), "error": e.message},
            )
            raise ValidationError(REASON_INVALID_INVOICE) from e

        invoice_msats = decoded.amount_msats
        if not invoice_msats or invoice_msats <= 0:
            raise ValidationError(REASON_INVALID_INVOICE)
        if invoice_msats > max_msats:
            raise AmountMismatch(REASON_INVOICE_TOO_LARGE)
        if invoice_msats < min_msats:
            raise ValidationError(REASON_INVOICE_TOO_SMALL)

        # Serialization point: only one caller wins PENDING -> PROCESSING
        point["invoice"] = invoice
        claimed = transition_status(
            self.db,
            transaction_id,
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            lightning=point,
        )

        if not claimed:
            logger.info(
                "Lost race for LNURL withdrawal",
                extra={"transaction_id": str(transaction_id)},
            )
            raise NotFoundOrExpired(REASON_NO_LONGER_VALID)

        try:
            payment = self.gateway.pay(invoice)
        except GatewayError as e:
            if e.outcome_unknown:
                # The gateway may have paid; only reconciliation can settle this row
                logger.error(
                    "Gateway payment outcome unknown, withdrawal left PROCESSING",
                    extra={
                        "transaction_id": str(transaction_id),
                        "status_code": e.status_code,
                        "error": e.message,
                    },
                )
                raise GatewayFailure(e.message) from e
            next_status = TransactionStatus.FAILED if e.permanent else TransactionStatus.PENDING
            self._transition(transaction_id, TransactionStatus.PROCESSING, next_status)
            logger.warning(
                "Gateway payment failed",
                extra={
                    "transaction_id": str(transaction_id),
                    "permanent": e.permanent,
                    "status": next_status.value,
                    "error": e.message,
                },
            )
            raise GatewayFailure(e.message) from e
        except Exception as e:
            # Outcome unknown: leave PROCESSING for manual or reconciled resolution
            logger.exception(
                "Unexpected gateway error during LNURL payment",
                extra={"transaction_id": str(transaction_id)},
            )
            raise InternalError(REASON_GENERIC) from e

        point["operationId"] = payment.operation_id
        point["feeMsats"] = payment.fee_msats
        self._transition(
            transaction_id,
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETE,
            amount_msats=invoice_msats,
            payment_tracker=payment.operation_id,
            lightning=point,
        )

        logger.info(
            "LNURL withdrawal paid",
            extra={
                "transaction_id": str(transaction_id),
                "operation_id": payment.operation_id,
                "amount_msats": invoice_msats,
                "fee_msats": payment.fee_msats,
            },
        )
        return {"status": "OK"}

    def _transition(self, transaction_id, from_status: TransactionStatus, to_status: TransactionStatus, **values) -> bool:
        if not transition_status(self.db, transaction_id, from_status, to_status, **values):
            logger.error(
                "Unexpected withdrawal state during transition",
                extra={
                    "transaction_id": str(transaction_id),
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Callback dispatch
    # ------------------------------------------------------------------

    def handle_callback(
        self,
        *,
        k1: Optional[str],
        tag: Optional[str] = None,
        callback: Optional[str] = None,
        max_withdrawable: Any = None,
        min_withdrawable: Any = None,
        default_description: Optional[str] = None,
        pr: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Dispatch a callback request to the right step and map every failure
        to the ``{"status": "ERROR", "reason"}`` envelope. Never raises.
        """
        try:
            if pr:
                return self.second_step(k1=k1, pr=pr)
            return self.first_step(
                k1=k1,
                tag=tag,
                callback=callback,
                max_withdrawable=max_withdrawable,
                min_withdrawable=min_withdrawable,
                default_description=default_description,
            )
        except LnurlError as e:
            return e.to_response()
        except Exception:
            logger.exception("Unhandled error in LNURL withdraw callback")
            self.db.rollback()
            return InternalError(REASON_GENERIC).to_response()
