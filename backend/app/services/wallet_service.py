"""
Wallet operations - deposits, invoice withdrawals and the user ledger
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.transactions.models import Transaction, TransactionStatus, TransactionType
from app.services.gateway import GatewayError, PaymentGateway
from app.services.lnurl.common import fiat_to_msats
from app.services.wallet_helpers import get_available_balance_msats, get_wallet_meta, transition_status

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


class WalletError(Exception):
    """Wallet operation rejected"""


class InsufficientBalanceError(WalletError):
    """Requested amount exceeds the available balance"""


class InvalidInvoiceError(WalletError):
    """Invoice cannot be decoded or its amount is not acceptable"""


@dataclass(frozen=True)
class DepositRequest:
    transaction_id: str
    invoice: str
    operation_id: str
    amount_msats: int


@dataclass(frozen=True)
class InvoiceWithdrawal:
    transaction_id: str
    operation_id: str
    amount_msats: int
    fee_msats: int


def _resolve_amount_msats(amount_msats: Optional[int], amount_fiat: Optional[Any], rate: Optional[Any]) -> int:
    if amount_msats is None:
        if amount_fiat is None or rate is None:
            raise ValueError("Either amount_msats or amount_fiat with rate is required")
        amount_msats = fiat_to_msats(amount_fiat, rate)
    return int(amount_msats)


def request_deposit(
    db: Session,
    gateway: PaymentGateway,
    *,
    user_id: str,
    amount_msats: Optional[int] = None,
    amount_fiat: Optional[Any] = None,
    rate: Optional[Any] = None,
    description: str = "Wallet deposit",
    reference: Optional[str] = None,
    context: Optional[Any] = None,
    schedule_watch: Optional[Callable[[str, Optional[Any]], Any]] = None,
) -> DepositRequest:
    """
    Issue a Lightning invoice and record the PENDING deposit it will settle.

    The gateway operationId becomes the transaction's payment_tracker, which
    is how the reconciler later finds it. ``context`` is stored raw and
    decoded once on write. ``schedule_watch(operation_id, context)`` is called
    after commit to start waiting for settlement (normally
    workers.jobs.enqueue_receive_watch).
    """
    amount_msats = _resolve_amount_msats(amount_msats, amount_fiat, rate)
    if amount_msats <= 0:
        raise ValueError("Deposit amount must be positive")

    issued = gateway.invoice(int(amount_msats), description)

    raw_context = context if context is None or isinstance(context, str) else json.dumps(context)
    transaction = Transaction(
        user_id=user_id,
        type=TransactionType.DEPOSIT,
        status=TransactionStatus.PENDING,
        amount_msats=int(amount_msats),
        amount_fiat=amount_fiat,
        reference=reference or description,
        payment_tracker=issued.operation_id,
        lightning={"invoice": issued.invoice, "operationId": issued.operation_id},
        context=raw_context,
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)

    logger.info(
        "Created deposit invoice",
        extra={
            "transaction_id": str(transaction.id),
            "operation_id": issued.operation_id,
            "amount_msats": int(amount_msats),
            "context_kind": transaction.context_kind.value,
        },
    )

    if schedule_watch is not None:
        schedule_watch(issued.operation_id, raw_context)

    return DepositRequest(
        transaction_id=str(transaction.id),
        invoice=issued.invoice,
        operation_id=issued.operation_id,
        amount_msats=int(amount_msats),
    )


def withdraw_to_invoice(
    db: Session,
    gateway: PaymentGateway,
    *,
    user_id: str,
    invoice: str,
    amount_msats: Optional[int] = None,
    amount_fiat: Optional[Any] = None,
    rate: Optional[Any] = None,
    reference: Optional[str] = None,
) -> InvoiceWithdrawal:
    """
    Pay a BOLT11 invoice out of a user's balance.

    The requested amount (msats, or fiat with rate) caps what the invoice may
    ask for; the invoice amount is what gets recorded and paid. The
    withdrawal is written PENDING and claimed PENDING -> PROCESSING with the
    same conditional update the LNURL path uses before the gateway is asked
    to pay.

    Gateway failures are re-raised. A definite rejection marks the withdrawal
    FAILED; when the outcome is unknown it stays PROCESSING until settled by
    reconciliation.

    Raises:
        ValueError: missing or non-positive amount
        InsufficientBalanceError: amount above the available balance
        InvalidInvoiceError: undecodable invoice, or invoice above the
            requested amount or the balance
        GatewayError: payment failed
    """
    requested_msats = _resolve_amount_msats(amount_msats, amount_fiat, rate)
    if requested_msats <= 0:
        raise ValueError("Withdrawal amount must be positive")
    if not isinstance(invoice, str) or not invoice.strip():
        raise InvalidInvoiceError("Invalid lightning invoice")
    invoice = invoice.strip()

    available = get_available_balance_msats(db, user_id)
    if requested_msats > available:
        logger.info(
            "Invoice withdrawal rejected: insufficient balance",
            extra={"user_id": user_id, "amount_msats": requested_msats, "available_msats": available},
        )
        raise InsufficientBalanceError("Insufficient funds")

    try:
        decoded = gateway.decode(invoice)
    except GatewayError as e:
        raise InvalidInvoiceError("Invalid lightning invoice") from e

    invoice_msats = decoded.amount_msats
    if not invoice_msats or invoice_msats <= 0:
        raise InvalidInvoiceError("Invalid lightning invoice")
    if invoice_msats > requested_msats or invoice_msats > available:
        raise InvalidInvoiceError("Invoice amount exceeds withdrawal amount or available balance")

    transaction = Transaction(
        user_id=user_id,
        type=TransactionType.WITHDRAW,
        status=TransactionStatus.PENDING,
        amount_msats=invoice_msats,
        amount_fiat=amount_fiat,
        reference=reference or decoded.description or "Lightning withdrawal",
        lightning={"invoice": invoice},
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    transaction_id = transaction.id

    if not transition_status(db, transaction_id, TransactionStatus.PENDING, TransactionStatus.PROCESSING):
        raise WalletError("Withdrawal is no longer pending")

    try:
        payment = gateway.pay(invoice)
    except GatewayError as e:
        if not e.outcome_unknown:
            transition_status(db, transaction_id, TransactionStatus.PROCESSING, TransactionStatus.FAILED)
        logger.warning(
            "Invoice withdrawal payment failed",
            extra={
                "transaction_id": str(transaction_id),
                "outcome_unknown": e.outcome_unknown,
                "error": e.message,
            },
        )
        raise

    transition_status(
        db,
        transaction_id,
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETE,
        payment_tracker=payment.operation_id,
        lightning={"invoice": invoice, "operationId": payment.operation_id, "feeMsats": payment.fee_msats},
    )

    logger.info(
        "Invoice withdrawal paid",
        extra={
            "transaction_id": str(transaction_id),
            "operation_id": payment.operation_id,
            "amount_msats": invoice_msats,
            "fee_msats": payment.fee_msats,
        },
    )

    return InvoiceWithdrawal(
        transaction_id=str(transaction_id),
        operation_id=payment.operation_id,
        amount_msats=invoice_msats,
        fee_msats=payment.fee_msats,
    )


def serialize_transaction(transaction: Transaction) -> Dict[str, Any]:
    lightning = transaction.lightning if isinstance(transaction.lightning, dict) else {}
    return {
        "id": str(transaction.id),
        "user_id": transaction.user_id,
        "type": transaction.type.value,
        "status": transaction.status.value,
        "amount_msats": int(transaction.amount_msats),
        "amount_fiat": str(transaction.amount_fiat) if transaction.amount_fiat is not None else None,
        "reference": transaction.reference,
        "payment_tracker": transaction.payment_tracker or lightning.get("operationId"),
        "lightning": lightning,
        "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
        "updated_at": transaction.updated_at.isoformat() if transaction.updated_at else None,
    }


def get_paginated_ledger(db: Session, user_id: str, page: int = 0, size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    """
    One page of a user's transactions, newest first.

    ``page`` is zero-based; a page past the end selects the last page.
    """
    if size <= 0:
        raise ValueError("Page size must be positive")

    total = db.execute(
        select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)
    ).scalar() or 0
    pages = math.ceil(total / size)
    page = max(int(page), 0)
    if page >= pages:
        page = max(pages - 1, 0)

    rows = db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(page * size)
        .limit(size)
    ).scalars().all()

    return {
        "transactions": [serialize_transaction(row) for row in rows],
        "page": page,
        "size": size,
        "pages": pages,
    }


def list_user_transactions(db: Session, user_id: str, page: int = 0, size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    """User ledger page together with the wallet meta"""
    return {
        "user_id": user_id,
        "ledger": get_paginated_ledger(db, user_id, page=page, size=size),
        "meta": get_wallet_meta(db, user_id),
    }
