"""
Payment gateway client

The gateway is a fedimint-clientd compatible REST service that holds the
wallet's e-cash and talks Lightning on its behalf. All calls are blocking
remote operations; callers must not hold locks across them.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx

from app.infrastructure.settings import get_settings

logger = logging.getLogger(__name__)

# Statuses that mean "try again later" rather than "this will never work"
_RETRYABLE_STATUS_CODES = {408, 425, 429}

# Transport failures raised before the request left this process
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.ProxyError, httpx.UnsupportedProtocol)


class GatewayError(Exception):
    """
    Gateway call failed.

    ``permanent`` is True when the gateway rejected the request outright
    (invoice expired, already paid, malformed). Transport errors, timeouts
    and 5xx responses are retryable.

    ``outcome_unknown`` is True when the request may have been executed by
    the gateway anyway: a timeout or transport error after the request was
    sent, a 5xx, or an unreadable success response. A ``pay`` failing this
    way may still have moved funds.
    """

    def __init__(
        self,
        message: str,
        permanent: bool = False,
        status_code: Optional[int] = None,
        outcome_unknown: bool = False,
    ):
        self.message = message
        self.permanent = permanent
        self.status_code = status_code
        self.outcome_unknown = outcome_unknown
        super().__init__(message)


@dataclass(frozen=True)
class InvoiceResult:
    invoice: str
    operation_id: str


@dataclass(frozen=True)
class DecodedInvoice:
    amount_msats: Optional[int]
    description: Optional[str]
    payment_hash: Optional[str]
    timestamp: Optional[int]


@dataclass(frozen=True)
class PaymentResult:
    operation_id: str
    fee_msats: int = 0
    payment_type: Optional[str] = None
    contract_id: Optional[str] = None


class PaymentGateway:
    """Interface the wallet core consumes from the Lightning backend"""

    def invoice(self, amount_msats: int, description: str) -> InvoiceResult:
        raise NotImplementedError("Subclasses must implement invoice")

    def decode(self, invoice: str) -> DecodedInvoice:
        raise NotImplementedError("Subclasses must implement decode")

    def pay(self, invoice: str) -> PaymentResult:
        raise NotImplementedError("Subclasses must implement pay")

    def await_receive(self, operation_id: str) -> bool:
        """Block until an invoice operation settles. True on success."""
        raise NotImplementedError("Subclasses must implement await_receive")


class FedimintGateway(PaymentGateway):
    """httpx client for the fedimint-clientd v2 Lightning API"""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        federation_id: str = "",
        gateway_id: str = "",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.federation_id = federation_id
        self.gateway_id = gateway_id
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _scope(self, body: Dict[str, Any]) -> Dict[str, Any]:
        scoped = dict(body)
        if self.federation_id:
            scoped["federationId"] = self.federation_id
        if self.gateway_id:
            scoped["gatewayId"] = self.gateway_id
        return scoped

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post(path, json=self._scope(body))
        except _NOT_SENT_ERRORS as e:
            logger.warning("Gateway unreachable", extra={"path": path, "error": str(e)})
            raise GatewayError("Payment gateway unavailable") from e
        except httpx.TimeoutException as e:
            logger.warning("Gateway call timed out", extra={"path": path})
            raise GatewayError("Payment gateway timed out", outcome_unknown=True) from e
        except httpx.HTTPError as e:
            logger.warning("Gateway transport error", extra={"path": path, "error": str(e)})
            raise GatewayError("Payment gateway unavailable", outcome_unknown=True) from e

        if response.status_code >= 400:
            message = _error_message(response)
            permanent = response.status_code < 500 and response.status_code not in _RETRYABLE_STATUS_CODES
            logger.warning(
                "Gateway rejected request",
                extra={"path": path, "status_code": response.status_code, "permanent": permanent},
            )
            raise GatewayError(
                message,
                permanent=permanent,
                status_code=response.status_code,
                outcome_unknown=response.status_code >= 500,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("Payment gateway returned an invalid response", outcome_unknown=True) from e
        if not isinstance(data, dict):
            raise GatewayError("Payment gateway returned an invalid response", outcome_unknown=True)
        return data

    def invoice(self, amount_msats: int, description: str) -> InvoiceResult:
        data = self._post("/v2/ln/invoice", {"amountMsat": amount_msats, "description": description})
        try:
            return InvoiceResult(invoice=data["invoice"], operation_id=data["operationId"])
        except KeyError as e:
            raise GatewayError(f"Payment gateway response missing {e.args[0]}") from e

    def decode(self, invoice: str) -> DecodedInvoice:
        data = self._post("/v2/ln/decode", {"invoice": invoice})
        return DecodedInvoice(
            amount_msats=_optional_int(data.get("amountMsat")),
            description=data.get("description"),
            payment_hash=data.get("paymentHash"),
            timestamp=_optional_int(data.get("timestamp")),
        )

    def pay(self, invoice: str) -> PaymentResult:
        data = self._post("/v2/ln/pay", {"paymentInfo": invoice})
        try:
            operation_id = data["operationId"]
        except KeyError as e:
            raise GatewayError("Payment gateway response missing operationId", outcome_unknown=True) from e
        return PaymentResult(
            operation_id=operation_id,
            fee_msats=_optional_int(data.get("fee")) or 0,
            payment_type=_payment_type(data.get("paymentType")),
            contract_id=data.get("contractId"),
        )

    def await_receive(self, operation_id: str) -> bool:
        data = self._post("/v2/ln/await-invoice", {"operationId": operation_id})
        status = data.get("status", data.get("state"))
        return str(status).lower() in ("claimed", "succeeded", "success", "complete", "completed")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or f"Payment gateway error ({response.status_code})"
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            if isinstance(payload.get(key), str) and payload[key]:
                return payload[key]
    return f"Payment gateway error ({response.status_code})"


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _payment_type(value: Any) -> Optional[str]:
    # Gateway reports {"lightning": "<op>"} or {"internal": "<op>"}
    if isinstance(value, dict):
        return next(iter(value), None)
    return value


@lru_cache()
def get_gateway() -> PaymentGateway:
    """Get the process-wide gateway client"""
    settings = get_settings()
    return FedimintGateway(
        base_url=settings.GATEWAY_BASE_URL,
        api_key=settings.GATEWAY_API_KEY,
        federation_id=settings.GATEWAY_FEDERATION_ID,
        gateway_id=settings.GATEWAY_ID,
        timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
    )
