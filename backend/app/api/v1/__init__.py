"""
API v1 routes - Public LNURL surface
"""

from fastapi import APIRouter, Response
from app.infrastructure.settings import get_settings
from app.api.v1.lnurl import router as lnurl_router

settings = get_settings()
router = APIRouter(prefix=settings.API_V1_PREFIX, tags=["api-v1"])


@router.options("/{path:path}")
async def options_handler(path: str):
    """Handle OPTIONS preflight requests for all /api/v1/* routes."""
    return Response(status_code=200)


# Register sub-routers
router.include_router(lnurl_router)
