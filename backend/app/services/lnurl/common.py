"""
LNURL protocol helpers shared by the withdraw (and future pay) flows

- bech32 LNURL encode / decode / validate
- k1 nonce generation
- Lightning address parsing
- fiat <-> millisatoshi conversion
- metadata and successAction formatting
- HMAC invoice signatures
"""

import hashlib
import hmac
import json
import re
import secrets
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, NamedTuple, Optional, Union
from urllib.parse import urlparse

from app.infrastructure.settings import get_settings
from app.services.lnurl.bech32 import bech32_decode, bech32_encode, convertbits
from app.services.lnurl.exceptions import InvalidEncoding

LNURL_HRP = "lnurl"
MSATS_PER_BTC = 10 ** 11

_LIGHTNING_ADDRESS_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_K1_RE = re.compile(r"^[0-9a-f]{64}$")

_IMAGE_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


class LightningAddress(NamedTuple):
    username: str
    domain: str


# ============================================================================
# bech32 LNURL
# ============================================================================

def encode_lnurl(url: str) -> str:
    """Encode a URL as a lowercase bech32 LNURL token"""
    if not isinstance(url, str) or not url:
        raise InvalidEncoding("URL must be a non-empty string")
    data = convertbits(url.encode("utf-8"), 8, 5, pad=True)
    return bech32_encode(LNURL_HRP, data)


def decode_lnurl(token: str) -> str:
    """
    Decode an LNURL token back to its URL.

    Raises:
        InvalidEncoding: bad checksum, wrong case, wrong prefix or otherwise
            non-conforming input
    """
    if not isinstance(token, str) or not token:
        raise InvalidEncoding("LNURL must be a non-empty string")

    hrp, data = bech32_decode(token)
    if hrp is None:
        raise InvalidEncoding("Invalid bech32 encoding")
    if hrp != LNURL_HRP:
        raise InvalidEncoding(f"Unexpected prefix '{hrp}'")
    if not data:
        raise InvalidEncoding("LNURL carries no payload")

    decoded = convertbits(data, 5, 8, pad=False)
    if decoded is None:
        raise InvalidEncoding("Invalid bech32 payload padding")
    try:
        return bytes(decoded).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncoding("LNURL payload is not UTF-8") from e


def validate_lnurl(token: Any) -> bool:
    """True when ``token`` is a well-formed lowercase LNURL. Never raises."""
    try:
        decode_lnurl(token)
    except InvalidEncoding:
        return False
    return True


# ============================================================================
# k1 nonce
# ============================================================================

def generate_k1() -> str:
    """32 bytes of CSPRNG output as 64 lowercase hex characters"""
    return secrets.token_hex(32)


def is_valid_k1(k1: Any) -> bool:
    return isinstance(k1, str) and bool(_K1_RE.match(k1))


# ============================================================================
# Lightning addresses
# ============================================================================

def is_lightning_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_LIGHTNING_ADDRESS_RE.match(value))


def parse_lightning_address(value: Any) -> Optional[LightningAddress]:
    """Split ``user@domain`` into its parts, or None when malformed"""
    if not is_lightning_address(value):
        return None
    username, domain = value.split("@", 1)
    return LightningAddress(username=username, domain=domain.lower())


def is_internal_domain(domain: str, base_domain: Optional[str] = None) -> bool:
    """True if ``domain`` is the configured base domain or one of its subdomains"""
    base = (base_domain or get_settings().LNURL_DOMAIN).strip().lower()
    if not domain or not base:
        return False
    domain = domain.strip().lower()
    return domain == base or domain.endswith("." + base)


def get_callback_url(path: str, base_url: Optional[str] = None) -> str:
    base = (base_url or get_settings().LNURL_CALLBACK_BASE_URL).rstrip("/")
    return f"{base}/{path.lstrip('/')}"


# ============================================================================
# Amounts
# ============================================================================

Number = Union[int, float, Decimal, str]


def _to_decimal(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def fiat_to_msats(fiat_amount: Number, rate: Number) -> int:
    """
    Convert a fiat amount to millisatoshis.

    ``rate`` is fiat units per 1 BTC. The result is rounded half-up to a
    whole millisatoshi.
    """
    rate_dec = _to_decimal(rate)
    if rate_dec <= 0:
        raise ValueError("rate must be positive")
    msats = _to_decimal(fiat_amount) * MSATS_PER_BTC / rate_dec
    return int(msats.to_integral_value(rounding=ROUND_HALF_UP))


def msats_to_fiat(msats: Number, rate: Number) -> Decimal:
    """Inverse of fiat_to_msats"""
    rate_dec = _to_decimal(rate)
    if rate_dec <= 0:
        raise ValueError("rate must be positive")
    return _to_decimal(msats) * rate_dec / MSATS_PER_BTC


def validate_amount(amount: Any, min_amount: Any, max_amount: Any) -> bool:
    """Inclusive range check. Never raises."""
    try:
        return min_amount <= amount <= max_amount
    except TypeError:
        return False


# ============================================================================
# Metadata / successAction
# ============================================================================

def _image_mime_type(image_url: str) -> str:
    path = urlparse(image_url).path
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _IMAGE_MIME_TYPES.get(ext, f"image/{ext}" if ext else "image/png")


def generate_metadata(description: str, image_url: Optional[str] = None) -> str:
    """LUD-06 metadata: JSON array of [mimeType, content] pairs"""
    metadata = [["text/plain", description]]
    if image_url:
        metadata.append([_image_mime_type(image_url), image_url])
    return json.dumps(metadata)


def format_success_action(kind: str, payload: Union[str, Dict[str, str]]) -> Dict[str, str]:
    """
    Build a LUD-09 successAction.

    ``("message", "text")`` -> ``{"tag": "message", "message": "text"}``
    ``("url", {"description", "url"})`` -> ``{"tag": "url", "description", "url"}``
    """
    if kind == "message":
        if not isinstance(payload, str):
            raise ValueError("message successAction requires a string payload")
        return {"tag": "message", "message": payload}
    if kind == "url":
        if not isinstance(payload, dict) or not payload.get("url"):
            raise ValueError("url successAction requires a url")
        return {
            "tag": "url",
            "description": payload.get("description", ""),
            "url": payload["url"],
        }
    raise ValueError(f"Unsupported successAction tag: {kind}")


# ============================================================================
# Invoice signatures
# ============================================================================

def _signing_secret(secret: Optional[str]) -> bytes:
    key = secret if secret is not None else get_settings().LNURL_SIGNING_SECRET
    if not key:
        raise ValueError("LNURL_SIGNING_SECRET is not configured")
    return key.encode("utf-8")


def generate_invoice_signature(invoice: str, secret: Optional[str] = None) -> str:
    """HMAC-SHA256 of the invoice, hex encoded (64 characters)"""
    return hmac.new(_signing_secret(secret), invoice.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_invoice_signature(invoice: str, signature: str, secret: Optional[str] = None) -> bool:
    """Constant-time comparison against the recomputed signature"""
    if not isinstance(invoice, str) or not isinstance(signature, str):
        return False
    expected = generate_invoice_signature(invoice, secret)
    try:
        return hmac.compare_digest(expected, signature)
    except TypeError:
        # Non-ASCII input
        return False
