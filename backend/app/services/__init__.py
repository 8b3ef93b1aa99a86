"""
Services layer - Application business logic
"""

from app.services.reconciler import TransactionReconciler, reconcile_receive
from app.services.wallet_helpers import get_available_balance_msats, get_wallet_meta
from app.services.wallet_service import list_user_transactions, request_deposit, withdraw_to_invoice

__all__ = [
    # Wallet helpers
    "get_available_balance_msats",
    "get_wallet_meta",
    # Wallet operations
    "request_deposit",
    "withdraw_to_invoice",
    "list_user_transactions",
    # Reconciliation
    "TransactionReconciler",
    "reconcile_receive",
]
