"""
LNURL-withdraw wire schemas (LUD-03)

The callback always answers HTTP 200; these models document the three body
shapes it can return.
"""

from typing import Literal
from pydantic import BaseModel, Field


class LnurlWithdrawRequest(BaseModel):
    """First step discovery payload"""
    tag: Literal["withdrawRequest"] = Field("withdrawRequest", description="LNURL tag")
    callback: str = Field(..., description="URL the wallet calls with k1 and pr")
    k1: str = Field(..., description="Single-use withdrawal nonce")
    defaultDescription: str = Field(..., description="Default invoice description")
    minWithdrawable: int = Field(..., description="Minimum withdrawable amount (msats)")
    maxWithdrawable: int = Field(..., description="Maximum withdrawable amount (msats)")

    class Config:
        json_schema_extra = {
            "example": {
                "tag": "withdrawRequest",
                "callback": "https://api.bitsacco.example/api/v1/lnurl/withdraw",
                "k1": "5f0c3d0e0d4b4f0a9a3c5d6e7f8091a2b3c4d5e6f708192a3b4c5d6e7f809102",
                "defaultDescription": "Withdraw from wallet",
                "minWithdrawable": 1000,
                "maxWithdrawable": 100000,
            }
        }


class LnurlErrorResponse(BaseModel):
    """Any failure"""
    status: Literal["ERROR"] = "ERROR"
    reason: str = Field(..., description="Human readable reason")

    class Config:
        json_schema_extra = {
            "example": {"status": "ERROR", "reason": "Withdrawal request not found or expired"}
        }
