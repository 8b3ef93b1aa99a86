"""
Webhook endpoints - INTERNAL / PAYMENT GATEWAY ONLY
"""

from fastapi import APIRouter
from app.infrastructure.settings import get_settings
from app.api.webhooks.gateway import router as gateway_router

settings = get_settings()
router = APIRouter(prefix=settings.WEBHOOKS_V1_PREFIX, tags=["webhooks-v1"])

# Register webhook routers
router.include_router(gateway_router)
