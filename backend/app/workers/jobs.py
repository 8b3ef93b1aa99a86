"""
RQ Jobs - Background tasks
"""

import logging
from typing import Any, Optional
from rq import Queue, Retry

from app.infrastructure.database import SessionLocal
from app.infrastructure.logging_config import trace_id_context
from app.services.events import get_event_bus
from app.services.gateway import GatewayError, get_gateway
from app.services.reconciler import reconcile_receive

logger = logging.getLogger(__name__)

QUEUE_NAME = "default"
RECONCILE_RETRY = Retry(max=5, interval=[5, 15, 60, 300, 900])


def reconcile_gateway_receive(
    operation_id: str,
    succeeded: bool = True,
    context: Optional[Any] = None,
    trace_id: Optional[str] = None,
) -> bool:
    """
    Apply a gateway receive outcome to the ledger.

    Safe to run any number of times for the same operation_id.
    """
    token = trace_id_context.set(trace_id)
    db = SessionLocal()
    try:
        return reconcile_receive(
            db,
            get_event_bus(),
            operation_id=operation_id,
            succeeded=succeeded,
            context=context,
        )
    finally:
        db.close()
        trace_id_context.reset(token)


def watch_gateway_receive(operation_id: str, context: Optional[Any] = None, trace_id: Optional[str] = None) -> bool:
    """
    Block on the gateway until the invoice for operation_id settles, then reconcile.

    Gateway errors propagate so RQ retries the job.
    """
    token = trace_id_context.set(trace_id)
    try:
        try:
            succeeded = get_gateway().await_receive(operation_id)
        except GatewayError as e:
            if not e.permanent:
                logger.warning(
                    "Awaiting gateway receive failed, will retry",
                    extra={"operation_id": operation_id, "error": e.message},
                )
                raise
            logger.info(
                "Gateway reports receive failed",
                extra={"operation_id": operation_id, "error": e.message},
            )
            succeeded = False
    finally:
        trace_id_context.reset(token)

    return reconcile_gateway_receive(operation_id, succeeded=succeeded, context=context, trace_id=trace_id)


def enqueue_reconciliation(redis_conn, *, operation_id: str, succeeded: bool, context: Optional[Any] = None):
    """Queue reconcile_gateway_receive"""
    queue = Queue(QUEUE_NAME, connection=redis_conn)
    job = queue.enqueue(
        reconcile_gateway_receive,
        operation_id,
        succeeded=succeeded,
        context=context,
        trace_id=trace_id_context.get(),
        retry=RECONCILE_RETRY,
    )
    logger.info("Enqueued reconciliation", extra={"operation_id": operation_id, "job_id": job.id})
    return job


def enqueue_receive_watch(redis_conn, *, operation_id: str, context: Optional[Any] = None):
    """Queue watch_gateway_receive for a freshly issued invoice"""
    queue = Queue(QUEUE_NAME, connection=redis_conn)
    job = queue.enqueue(
        watch_gateway_receive,
        operation_id,
        context=context,
        trace_id=trace_id_context.get(),
        retry=RECONCILE_RETRY,
    )
    logger.info("Enqueued receive watch", extra={"operation_id": operation_id, "job_id": job.id})
    return job
