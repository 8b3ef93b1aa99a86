"""
Transaction reconciler - applies gateway settlement events to the ledger

Gateway notifications are delivered at-least-once, in any order, possibly to
several replicas at the same time. Each handler performs one conditional
UPDATE (matching payment_tracker and a non-terminal status); the caller whose
UPDATE touched the row is the only one that publishes downstream events. A
duplicate or unknown operationId is a no-op.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.transactions.context import TransactionContext, decode_context
from app.core.transactions.models import OPEN_STATUSES, Transaction, TransactionStatus
from app.services.events import COLLECTION_FOR_SHARES, EventBus

logger = logging.getLogger(__name__)

COLLECTION_FOR_SHARES_CONTEXT = "COLLECTION_FOR_SHARES"


class TransactionReconciler:
    """Idempotent handlers for gateway receive notifications"""

    def __init__(self, db: Session, event_bus: EventBus):
        self.db = db
        self.event_bus = event_bus

    def handle_receive_success(self, operation_id: str, context: Any = None) -> bool:
        """
        Mark the transaction tracked by ``operation_id`` COMPLETE.

        Returns True when this call performed the transition, False when the
        event was a duplicate or referenced an unknown operation.
        """
        return self._settle(operation_id, TransactionStatus.COMPLETE, context)

    def handle_receive_failure(self, operation_id: str, context: Any = None) -> bool:
        """Mark the transaction tracked by ``operation_id`` FAILED (same idempotency rules)"""
        return self._settle(operation_id, TransactionStatus.FAILED, context)

    def _settle(self, operation_id: str, status: TransactionStatus, event_context: Any) -> bool:
        if not operation_id:
            logger.warning("Ignoring receive notification without operationId")
            return False

        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.payment_tracker == operation_id,
                Transaction.status.in_(OPEN_STATUSES),
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount == 0:
            logger.info(
                "Receive notification is a no-op (duplicate or unknown operation)",
                extra={"operation_id": operation_id, "status": status.value},
            )
            return False

        transaction = self.db.execute(
            select(Transaction).where(Transaction.payment_tracker == operation_id)
        ).scalar_one()

        logger.info(
            "Reconciled gateway receive",
            extra={
                "operation_id": operation_id,
                "transaction_id": str(transaction.id),
                "status": status.value,
            },
        )

        self._publish_downstream(transaction, status, event_context)
        return True

    def _resolve_context(self, transaction: Transaction, event_context: Any) -> TransactionContext:
        # A stored payload, routable or not, is authoritative; the event copy
        # only fills in for records written without any context
        if transaction.context is not None:
            return transaction.decoded_context
        return decode_context(event_context)

    def _publish_downstream(self, transaction: Transaction, status: TransactionStatus, event_context: Any) -> None:
        context = self._resolve_context(transaction, event_context)
        if not context.is_shares_subscription:
            if context.decode_error:
                logger.info(
                    "Transaction context not routable",
                    extra={"transaction_id": str(transaction.id), "reason": context.decode_error},
                )
            return

        event = {
            "context": COLLECTION_FOR_SHARES_CONTEXT,
            "payload": {
                "paymentTracker": context.tracker_id,
                "paymentStatus": status.value,
            },
        }
        # Settlement is already committed; a publish failure must not undo it
        try:
            self.event_bus.publish(COLLECTION_FOR_SHARES, event)
        except Exception:
            logger.exception(
                "Failed to publish collection_for_shares",
                extra={"transaction_id": str(transaction.id), "tracker_id": context.tracker_id},
            )


def reconcile_receive(
    db: Session,
    event_bus: EventBus,
    *,
    operation_id: str,
    succeeded: bool = True,
    context: Optional[Any] = None,
) -> bool:
    """Convenience entry point used by the webhook and the worker"""
    reconciler = TransactionReconciler(db, event_bus)
    if succeeded:
        return reconciler.handle_receive_success(operation_id, context)
    return reconciler.handle_receive_failure(operation_id, context)
