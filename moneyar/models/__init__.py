"""
Data Models Package

This package contains all Pydantic models used in Moneyar.
All data flowing through the ledger must conform to these schemas.
"""

from moneyar.models.ledger import (
    ACCOUNT_TYPE_LABELS,
    TRANSACTION_CATEGORY_LABELS,
    Account,
    AccountType,
    CreateAccountInput,
    CreateTransactionInput,
    DashboardSummary,
    ErrorCode,
    OperationResult,
    SignInInput,
    Transaction,
    TransactionCategory,
    TransactionType,
    UpdateAccountInput,
    UpdateTransactionInput,
    ValidationIssue,
    utcnow,
)
from moneyar.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ACCOUNT_TYPE_LABELS",
    "TRANSACTION_CATEGORY_LABELS",
    "Account",
    "AccountType",
    "CreateAccountInput",
    "CreateTransactionInput",
    "DashboardSummary",
    "ErrorCode",
    "OperationResult",
    "SignInInput",
    "Transaction",
    "TransactionCategory",
    "TransactionType",
    "UpdateAccountInput",
    "UpdateTransactionInput",
    "ValidationIssue",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
