"""
Models registry for Alembic - Import all models here to ensure Base.metadata is complete

This module is used by Alembic and by the test suite to discover all models.
"""

# Import Base first
from app.infrastructure.database import Base

from app.core.transactions.models import Transaction, TransactionType, TransactionStatus

__all__ = [
    "Base",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
]
