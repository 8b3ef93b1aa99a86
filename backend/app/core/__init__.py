"""
Core domain models - Export all models for Alembic
"""

from app.core.transactions.models import Transaction

__all__ = ["Transaction"]
