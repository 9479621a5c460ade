"""
Ledger core: error taxonomy, balance arithmetic and the pending overlay.

LedgerService lives in moneyar.ledger.service; it is not re-exported here
because the validation package imports the error types from this package.
"""

from moneyar.ledger.balance import (
    adjustment_delta,
    balance_effect,
    creation_delta,
    reversal_delta,
)
from moneyar.ledger.errors import (
    AccountNotFoundError,
    AuthorizationError,
    LedgerError,
    NotFoundError,
    TransactionNotFoundError,
    ValidationError,
    error_for_result,
)
from moneyar.ledger.pending import (
    PendingAction,
    PendingItem,
    PendingOverlay,
    new_pending_key,
)

__all__ = [
    "adjustment_delta",
    "balance_effect",
    "creation_delta",
    "reversal_delta",
    "AccountNotFoundError",
    "AuthorizationError",
    "LedgerError",
    "NotFoundError",
    "TransactionNotFoundError",
    "ValidationError",
    "error_for_result",
    "PendingAction",
    "PendingItem",
    "PendingOverlay",
    "new_pending_key",
]
