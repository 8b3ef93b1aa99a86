"""
Payment gateway (Lightning backend) integration
"""

from app.services.gateway.client import (
    DecodedInvoice,
    FedimintGateway,
    GatewayError,
    InvoiceResult,
    PaymentGateway,
    PaymentResult,
    get_gateway,
)

__all__ = [
    "DecodedInvoice",
    "FedimintGateway",
    "GatewayError",
    "InvoiceResult",
    "PaymentGateway",
    "PaymentResult",
    "get_gateway",
]
