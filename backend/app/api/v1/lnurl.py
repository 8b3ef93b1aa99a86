"""
LNURL-withdraw callback - PUBLIC, UNAUTHENTICATED

Every answer is HTTP 200; failures use the LNURL error envelope
{"status": "ERROR", "reason": ...}.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.dependencies import gateway_dependency, lnurl_rate_limiter_dependency
from app.infrastructure.database import get_db
from app.schemas.lnurl import LnurlErrorResponse, LnurlWithdrawRequest
from app.services.gateway import PaymentGateway
from app.services.lnurl.withdraw_service import LnurlWithdrawService
from app.utils.rate_limiter import RateLimiter, get_client_identifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lnurl", tags=["lnurl"])

RATE_LIMIT_ACTION = "lnurl:withdraw"
REASON_RATE_LIMITED = "Too many requests, please try again later"


@router.get(
    "/withdraw",
    summary="LNURL-withdraw callback",
    description="First step (tag=withdrawRequest) returns the discovery payload; second step (pr=<invoice>) pays the reserved withdrawal.",
    responses={
        200: {
            "model": LnurlWithdrawRequest,
            "description": "Discovery payload on the first step, {\"status\": \"OK\"} on a paid second step, or the LNURL error envelope",
        }
    },
)
def lnurl_withdraw_callback(
    request: Request,
    k1: Optional[str] = Query(None, description="Withdrawal nonce"),
    tag: Optional[str] = Query(None, description="Must be withdrawRequest on the first step"),
    callback: Optional[str] = Query(None),
    max_withdrawable: Optional[str] = Query(None, alias="maxWithdrawable"),
    min_withdrawable: Optional[str] = Query(None, alias="minWithdrawable"),
    default_description: Optional[str] = Query(None, alias="defaultDescription"),
    pr: Optional[str] = Query(None, description="BOLT11 invoice (second step)"),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(gateway_dependency),
    limiter: RateLimiter = Depends(lnurl_rate_limiter_dependency),
) -> JSONResponse:
    identifier = get_client_identifier(request)
    decision = limiter.check(identifier, RATE_LIMIT_ACTION)
    if not decision.allowed:
        return JSONResponse(
            content=LnurlErrorResponse(reason=REASON_RATE_LIMITED).model_dump(),
            headers={"Retry-After": str(max(0, (decision.reset_at or 0) - int(limiter.clock())))},
        )

    service = LnurlWithdrawService(db=db, gateway=gateway)
    result = service.handle_callback(
        k1=k1,
        tag=tag,
        callback=callback,
        max_withdrawable=max_withdrawable,
        min_withdrawable=min_withdrawable,
        default_description=default_description,
        pr=pr,
    )

    if pr and result.get("status") == "OK":
        limiter.reset(identifier, RATE_LIMIT_ACTION)

    if result.get("status") == "ERROR":
        logger.info(
            "LNURL withdraw callback rejected",
            extra={"step": "second" if pr else "first", "reason": result.get("reason")},
        )

    return JSONResponse(content=result)
