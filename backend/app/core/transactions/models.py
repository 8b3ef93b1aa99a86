"""
Transaction model - ledger record for Lightning deposits and withdrawals
"""

from sqlalchemy import BigInteger, Column, DateTime, Enum as SQLEnum, JSON, Numeric, String, Text
from sqlalchemy.orm import validates
import enum
from app.core.common.base_model import BaseModel
from app.core.transactions.context import ContextKind, TransactionContext, decode_context


class TransactionType(str, enum.Enum):
    """Transaction type enum"""
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"


class TransactionStatus(str, enum.Enum):
    """Transaction status enum - monotonic, COMPLETE and FAILED are terminal"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETE, TransactionStatus.FAILED})
OPEN_STATUSES = (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


class Transaction(BaseModel):
    """
    Transaction model - the unit of the ledger

    amount_msats is canonical; amount_fiat is a projection kept for display.

    ``lightning`` holds either ``{"invoice": ...}`` (deposit / pay-by-invoice)
    or an LNURL withdrawal point ``{"k1", "expiresAt", "maxWithdrawableMsats"}``.
    The withdrawal point's k1 and expiry are mirrored to indexed columns so
    lookups and the single-use constraint are enforced by the database.

    ``context`` keeps the raw correlation payload; ``context_kind`` and
    ``context_ref`` are its decoded form, set whenever ``context`` is assigned.
    ``context_error`` records why a payload decoded to kind none (NULL when
    it was absent or simply unrelated).

    Status is only ever changed through conditional UPDATE statements
    (see services.lnurl.withdraw_service and services.reconciler).
    """

    __tablename__ = "wallet_transactions"

    user_id = Column(String(64), nullable=False, index=True)
    type = Column(SQLEnum(TransactionType, name="transaction_type", create_constraint=True), nullable=False, index=True)
    status = Column(SQLEnum(TransactionStatus, name="transaction_status", create_constraint=True), nullable=False, default=TransactionStatus.PENDING, index=True)
    amount_msats = Column(BigInteger, nullable=False)
    amount_fiat = Column(Numeric(20, 2), nullable=True)
    reference = Column(String(255), nullable=True)
    payment_tracker = Column(String(255), nullable=True, unique=True, index=True)  # Gateway operation id
    lightning = Column(JSON, nullable=True)
    lnurl_k1 = Column(String(128), nullable=True, unique=True, index=True)
    lnurl_expires_at = Column(DateTime(timezone=True), nullable=True)
    context = Column(Text, nullable=True)
    context_kind = Column(SQLEnum(ContextKind, name="transaction_context_kind", create_constraint=True, values_callable=lambda e: [m.value for m in e]), nullable=False, default=ContextKind.NONE)
    context_ref = Column(String(255), nullable=True, index=True)
    context_error = Column(String(32), nullable=True)

    @validates("context")
    def _decode_context_on_write(self, key, value):
        decoded = decode_context(value)
        self.context_kind = decoded.kind
        self.context_ref = decoded.tracker_id
        self.context_error = decoded.decode_error
        return value

    @property
    def decoded_context(self) -> TransactionContext:
        kind = self.context_kind or ContextKind.NONE
        if kind == ContextKind.SHARES_SUBSCRIPTION and self.context_ref:
            return TransactionContext.shares_subscription(self.context_ref)
        return TransactionContext.none(decode_error=self.context_error)

    @property
    def withdrawal_point(self):
        """LNURL withdrawal point descriptor, or None"""
        if isinstance(self.lightning, dict) and self.lightning.get("k1"):
            return self.lightning
        return None

    @property
    def max_withdrawable_msats(self) -> int:
        point = self.withdrawal_point
        if point and point.get("maxWithdrawableMsats") is not None:
            return int(point["maxWithdrawableMsats"])
        return int(self.amount_msats)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.type} {self.status} {self.amount_msats}msats>"
