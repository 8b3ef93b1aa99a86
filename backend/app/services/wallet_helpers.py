"""
Wallet balance helpers - aggregates over the transaction ledger
"""

import logging
from typing import Dict

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.transactions.models import Transaction, TransactionStatus, TransactionType, OPEN_STATUSES

logger = logging.getLogger(__name__)


def _sum_msats(db: Session, user_id: str, tx_type: TransactionType, statuses) -> int:
    result = db.execute(
        select(func.coalesce(func.sum(Transaction.amount_msats), 0)).where(
            Transaction.user_id == user_id,
            Transaction.type == tx_type,
            Transaction.status.in_(list(statuses)),
        )
    ).scalar()
    return int(result or 0)


def get_wallet_meta(db: Session, user_id: str) -> Dict[str, int]:
    """
    Summarize a user's settled ledger (millisatoshis).

    Returns:
    - total_deposits: sum of COMPLETE deposits
    - total_withdrawals: sum of COMPLETE withdrawals
    - current_balance: total_deposits - total_withdrawals

    A failed aggregate is logged and counted as 0.
    """
    totals = {TransactionType.DEPOSIT: 0, TransactionType.WITHDRAW: 0}
    try:
        rows = db.execute(
            select(Transaction.type, func.coalesce(func.sum(Transaction.amount_msats), 0))
            .where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.COMPLETE,
            )
            .group_by(Transaction.type)
        ).all()
        for tx_type, total in rows:
            totals[TransactionType(tx_type)] = int(total or 0)
    except SQLAlchemyError:
        logger.exception("Failed to aggregate wallet meta", extra={"user_id": user_id})

    total_deposits = totals[TransactionType.DEPOSIT]
    total_withdrawals = totals[TransactionType.WITHDRAW]
    return {
        "total_deposits": total_deposits,
        "total_withdrawals": total_withdrawals,
        "current_balance": total_deposits - total_withdrawals,
    }


def get_available_balance_msats(db: Session, user_id: str) -> int:
    """
    Balance that can still be reserved for a new withdrawal.

    COMPLETE deposits minus every withdrawal that is COMPLETE or still open
    (PENDING / PROCESSING), so an outstanding withdrawal point holds its amount.
    """
    deposits = _sum_msats(db, user_id, TransactionType.DEPOSIT, [TransactionStatus.COMPLETE])
    withdrawals = _sum_msats(
        db,
        user_id,
        TransactionType.WITHDRAW,
        [TransactionStatus.COMPLETE, *OPEN_STATUSES],
    )
    return deposits - withdrawals


def transition_status(db: Session, transaction_id, from_status: TransactionStatus, to_status: TransactionStatus, **values) -> bool:
    """
    Conditional status change: ``UPDATE ... WHERE id = :id AND status = :from``.

    Commits, and returns True only for the caller whose UPDATE matched the row.
    This is the ledger's sole serialization primitive.
    """
    result = db.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1
