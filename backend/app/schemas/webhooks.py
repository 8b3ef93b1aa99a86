"""
Webhook payload schemas
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class GatewayReceiveWebhookPayload(BaseModel):
    """
    Payment gateway receive notification

    Delivered at-least-once and in no particular order. ``context`` is the
    opaque correlation payload attached when the invoice was requested.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "operationId": "c2f1a9b0e6d74c3f",
                "status": "succeeded",
                "context": "{\"sharesSubscriptionTracker\": \"shares-42\"}",
            }
        },
    )

    operation_id: str = Field(..., alias="operationId", description="Gateway operation id (transaction paymentTracker)")
    status: Literal["succeeded", "failed"] = Field("succeeded", description="Receive outcome")
    context: Optional[Any] = Field(None, description="Opaque correlation payload (string or object)")

    @field_validator("operation_id")
    @classmethod
    def validate_operation_id(cls, v: str) -> str:
        """Ensure operationId is not blank"""
        if not v or not v.strip():
            raise ValueError("operationId must not be empty")
        return v.strip()

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class GatewayReceiveWebhookResponse(BaseModel):
    """Webhook response schema"""
    status: Literal["applied", "duplicate", "queued"] = Field(..., description="Processing outcome")
    operation_id: str = Field(..., description="Gateway operation id")

    class Config:
        json_schema_extra = {
            "example": {"status": "applied", "operation_id": "c2f1a9b0e6d74c3f"}
        }
