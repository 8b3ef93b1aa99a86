"""
FastAPI application entry point
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.infrastructure.settings import get_settings
from app.infrastructure.logging_config import setup_logging
from app.api.exceptions import (
    http_exception_handler,
    lnurl_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from app.api.public.health import router as health_router
from app.api.v1 import router as api_v1_router
from app.api.webhooks import router as webhooks_router
from app.services.lnurl.exceptions import LnurlError
from app.utils.trace_id import TraceIDMiddleware
from app.utils.request_logging import RequestLoggingMiddleware

# Get settings
settings = get_settings()

# Setup logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lightning Wallet Core API",
    description="LNURL-withdraw callback and payment gateway reconciliation",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# LNURL wallets call from anywhere; CORS only matters for browser tooling
if settings.CORS_ENABLED:
    if not settings.cors_allow_origins_list:
        logger.warning("CORS_ENABLED=True but CORS_ALLOW_ORIGINS is empty; no origin will be allowed")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_methods=settings.cors_allow_methods_list or ["GET"],
        allow_headers=["Content-Type", "X-Request-Id", "X-Trace-ID"],
        allow_credentials=False,
    )

# Add custom middlewares (order matters - last added is outermost)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TraceIDMiddleware)

# Register exception handlers
app.add_exception_handler(LnurlError, lnurl_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(api_v1_router)
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Lightning Wallet Core API",
        "version": "1.0.0",
        "status": "running",
    }
