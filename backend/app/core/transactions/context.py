"""
Transaction context - typed correlation payload for downstream routing

The raw ``context`` string travels with a transaction from the gateway call
that created it. It is decoded once, when it is written, into a small tagged
union so that readers never re-parse JSON:

- ``{kind: shares-subscription, tracker_id}`` - settlement must be forwarded
  to the shares service
- ``{kind: none}`` - nothing downstream cares (including payloads that could
  not be parsed, which keep their ``decode_error`` for audit)
"""

import enum
import json
from dataclasses import dataclass
from typing import Any, Optional


class ContextKind(str, enum.Enum):
    """Recognized context variants"""
    NONE = "none"
    SHARES_SUBSCRIPTION = "shares-subscription"


# Correlation keys accepted in the raw JSON payload
SHARES_SUBSCRIPTION_KEYS = ("sharesSubscriptionTracker", "shares_subscription_tracker")


@dataclass(frozen=True)
class TransactionContext:
    kind: ContextKind = ContextKind.NONE
    tracker_id: Optional[str] = None
    decode_error: Optional[str] = None

    @classmethod
    def none(cls, decode_error: Optional[str] = None) -> "TransactionContext":
        return cls(kind=ContextKind.NONE, decode_error=decode_error)

    @classmethod
    def shares_subscription(cls, tracker_id: str) -> "TransactionContext":
        return cls(kind=ContextKind.SHARES_SUBSCRIPTION, tracker_id=tracker_id)

    @property
    def is_shares_subscription(self) -> bool:
        return self.kind == ContextKind.SHARES_SUBSCRIPTION

    def to_raw(self) -> Optional[str]:
        """Serialize back to the raw wire form (None for kind none)"""
        if self.is_shares_subscription:
            return json.dumps({"sharesSubscriptionTracker": self.tracker_id})
        return None


def decode_context(raw: Any) -> TransactionContext:
    """
    Decode a raw context payload. Never raises.

    Accepts a JSON string, an already-decoded dict, or None.
    """
    if raw is None or raw == "":
        return TransactionContext.none()

    if isinstance(raw, dict):
        payload = raw
    elif isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError:
            return TransactionContext.none(decode_error="invalid-json")
    else:
        return TransactionContext.none(decode_error="unsupported-type")

    if not isinstance(payload, dict):
        return TransactionContext.none(decode_error="not-an-object")

    for key in SHARES_SUBSCRIPTION_KEYS:
        tracker_id = payload.get(key)
        if isinstance(tracker_id, str) and tracker_id.strip():
            return TransactionContext.shares_subscription(tracker_id.strip())

    return TransactionContext.none()
