"""
Payment gateway webhook endpoints
"""

import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Header, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.api.dependencies import event_bus_dependency, queue_redis_dependency
from app.infrastructure.database import get_db
from app.infrastructure.logging_config import trace_id_context
from app.infrastructure.settings import get_settings
from app.schemas.webhooks import GatewayReceiveWebhookPayload, GatewayReceiveWebhookResponse
from app.services.events import EventBus
from app.services.reconciler import reconcile_receive
from app.utils.webhook_security import verify_gateway_webhook_security
from app.workers.jobs import enqueue_reconciliation

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/gateway/receive",
    response_model=GatewayReceiveWebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Payment gateway receive notification",
    description="Receive settlement notifications for Lightning invoices. INTERNAL / GATEWAY ONLY endpoint. Requires HMAC signature verification.",
)
async def gateway_receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    event_bus: EventBus = Depends(event_bus_dependency),
    queue_redis=Depends(queue_redis_dependency),
    x_gateway_signature: Optional[str] = Header(None, alias="X-Gateway-Signature", description="HMAC-SHA256 signature of request body"),
    x_gateway_timestamp: Optional[str] = Header(None, alias="X-Gateway-Timestamp", description="Unix timestamp for replay protection"),
) -> GatewayReceiveWebhookResponse:
    """
    Apply a gateway receive notification to the ledger.

    1. Verifies the HMAC signature over the raw body (401 on failure)
    2. Validates the payload (422 on failure)
    3. Reconciles inline, or enqueues reconciliation when RECONCILE_ASYNC

    Duplicates are answered 200 with status "duplicate" so the gateway stops
    redelivering.
    """
    trace_id = trace_id_context.get() or "unknown"

    body_bytes = await request.body()

    is_valid, error_code, error_details = verify_gateway_webhook_security(
        payload_body=body_bytes,
        signature_header=x_gateway_signature,
        timestamp_header=x_gateway_timestamp,
    )
    if not is_valid:
        logger.warning(
            "Gateway webhook security verification failed",
            extra={"code": error_code, "details": error_details, "path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": error_code or "INVALID_SIGNATURE",
                    "message": "Webhook signature verification failed",
                    "trace_id": trace_id,
                }
            },
        )

    try:
        payload = GatewayReceiveWebhookPayload.model_validate(json.loads(body_bytes.decode("utf-8")))
    except (ValueError, PydanticValidationError) as e:
        logger.warning("Invalid gateway webhook payload", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": {
                    "code": "INVALID_PAYLOAD",
                    "message": "Invalid webhook payload",
                    "trace_id": trace_id,
                }
            },
        )

    if get_settings().RECONCILE_ASYNC:
        enqueue_reconciliation(
            queue_redis,
            operation_id=payload.operation_id,
            succeeded=payload.succeeded,
            context=payload.context,
        )
        return GatewayReceiveWebhookResponse(status="queued", operation_id=payload.operation_id)

    applied = reconcile_receive(
        db,
        event_bus,
        operation_id=payload.operation_id,
        succeeded=payload.succeeded,
        context=payload.context,
    )
    return GatewayReceiveWebhookResponse(
        status="applied" if applied else "duplicate",
        operation_id=payload.operation_id,
    )
