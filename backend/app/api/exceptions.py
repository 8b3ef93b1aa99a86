"""
Global exception handlers

Routes outside the LNURL surface answer with
{"error": {"code", "message", "trace_id"}}. The LNURL callback always answers
HTTP 200 with {"status": "ERROR", "reason"}, even for errors raised before
the route body runs.
"""

import logging
from typing import Any, Dict
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.infrastructure.settings import get_settings
from app.services.lnurl.exceptions import InternalError, LnurlError, ValidationError
from app.utils.trace_id import get_trace_id

logger = logging.getLogger(__name__)


def is_lnurl_request(request: Request) -> bool:
    return request.url.path.startswith(get_settings().LNURL_WITHDRAW_PATH)


def lnurl_error_response(error: LnurlError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_200_OK, content=error.to_response())


async def lnurl_exception_handler(request: Request, exc: LnurlError) -> JSONResponse:
    """LNURL errors escaping a route still use the LNURL envelope"""
    return lnurl_error_response(exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions"""
    trace_id = get_trace_id(request)

    # If detail is already a dict with "error" key, use it directly (preserving custom codes)
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        error_response: Dict[str, Any] = exc.detail.copy()
        if isinstance(error_response["error"], dict) and "trace_id" not in error_response["error"]:
            error_response["error"]["trace_id"] = trace_id
    else:
        error_response = {
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
                "trace_id": trace_id,
            }
        }

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions"""
    if is_lnurl_request(request):
        return lnurl_error_response(ValidationError("Invalid request parameters"))

    trace_id = get_trace_id(request)
    error_response: Dict[str, Any] = {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": _json_safe(exc.errors()),
            "trace_id": trace_id,
        }
    }

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions"""
    trace_id = get_trace_id(request)

    # Log the actual exception, never expose details
    logger.exception("Unhandled exception", exc_info=exc, extra={"path": request.url.path})

    if is_lnurl_request(request):
        return lnurl_error_response(InternalError())

    error_response: Dict[str, Any] = {
        "error": {
            "code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "trace_id": trace_id,
        }
    }

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def _json_safe(obj):
    """Recursively convert non-JSON-serializable objects to strings"""
    if isinstance(obj, dict):
        return {key: _json_safe(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(item) for item in obj]
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)
