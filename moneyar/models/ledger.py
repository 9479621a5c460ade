"""
Core Data Models for Moneyar

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Amounts are always Decimal and always non-negative.
Direction (money in / money out) is carried by TransactionType, never by sign.
"""

from datetime import date as date_type, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    CASH = "cash"
    OTHER = "other"


class TransactionType(str, Enum):
    """Direction of a transaction relative to its account."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategory(str, Enum):
    """
    Supported transaction categories.

    DESIGN DECISION: Using explicit categories rather than free text ensures
    consistent categorization and enables reliable reporting.
    """
    FOOD = "food"
    TRANSPORTATION = "transportation"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    BILLS = "bills"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    SALARY = "salary"
    INVESTMENT = "investment"
    TRANSFER = "transfer"
    OTHER = "other"


class ErrorCode(str, Enum):
    """Machine-readable failure class carried by OperationResult."""
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    STORAGE = "storage"


ACCOUNT_TYPE_LABELS = {
    AccountType.CHECKING: "Checking",
    AccountType.SAVINGS: "Savings",
    AccountType.CREDIT: "Credit",
    AccountType.INVESTMENT: "Investment",
    AccountType.CASH: "Cash",
    AccountType.OTHER: "Other",
}

TRANSACTION_CATEGORY_LABELS = {
    TransactionCategory.FOOD: "Food & Dining",
    TransactionCategory.TRANSPORTATION: "Transportation",
    TransactionCategory.ENTERTAINMENT: "Entertainment",
    TransactionCategory.SHOPPING: "Shopping",
    TransactionCategory.BILLS: "Bills & Utilities",
    TransactionCategory.HEALTHCARE: "Healthcare",
    TransactionCategory.EDUCATION: "Education",
    TransactionCategory.SALARY: "Salary",
    TransactionCategory.INVESTMENT: "Investment",
    TransactionCategory.TRANSFER: "Transfer",
    TransactionCategory.OTHER: "Other",
}


# =============================================================================
# ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A named financial container with a running balance.

    The balance is kept equal to the seed value plus the net effect of
    the account's transactions, except after a manual override through
    an account edit.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: AccountType
    balance: Decimal
    bank: Optional[str] = None
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(
        default=1,
        ge=1,
        description="Optimistic concurrency stamp, bumped on every write"
    )


class Transaction(BaseModel):
    """A single dated income or expense event attributed to one account."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Magnitude only; direction comes from type"
    )
    description: str
    category: TransactionCategory
    type: TransactionType
    date: datetime = Field(
        ...,
        description="User-supplied logical date, independent of created_at"
    )
    account_id: str
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def signed_amount(self) -> Decimal:
        """Income counts positive, expense negative."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount


# =============================================================================
# INPUT SCHEMAS - what callers may send
# =============================================================================

def _coerce_datetime(v: Any) -> Any:
    """Accept plain dates as midnight and normalise aware datetimes to naive UTC."""
    if isinstance(v, datetime):
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v
    if isinstance(v, date_type):
        return datetime.combine(v, time.min)
    return v


class SignInInput(BaseModel):
    """Identity offered at sign-in."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=200)

    @field_validator('email', mode='before')
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class CreateAccountInput(BaseModel):
    """Fields accepted when opening an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        description="Account name"
    )
    type: AccountType
    balance: Decimal = Field(
        default=Decimal("0"),
        max_digits=14,
        decimal_places=2,
        description="Initial balance (may be negative, e.g. credit lines)"
    )
    bank: Optional[str] = Field(
        default=None,
        description="Bank or institution label"
    )

    @field_validator('bank')
    @classmethod
    def blank_bank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class UpdateAccountInput(CreateAccountInput):
    """
    Full replacement of an account's editable fields.

    Balance is required here: an edit is a complete overwrite, and the
    balance it carries is a deliberate manual correction.
    """

    id: str = Field(..., min_length=1)
    balance: Decimal = Field(
        ...,
        max_digits=14,
        decimal_places=2,
        description="New balance (direct override)"
    )


class _TransactionFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        ge=Decimal("0.01"),
        max_digits=14,
        decimal_places=2,
        description="Amount must be greater than 0"
    )
    description: str = Field(
        ...,
        min_length=1,
        description="Description is required"
    )
    category: TransactionCategory
    type: TransactionType
    date: datetime

    @field_validator('date', mode='before')
    @classmethod
    def coerce_date(cls, v: Any) -> Any:
        return _coerce_datetime(v)


class CreateTransactionInput(_TransactionFields):
    """Fields accepted when recording a transaction."""

    account_id: str = Field(
        ...,
        min_length=1,
        description="Account is required"
    )


class UpdateTransactionInput(_TransactionFields):
    """Full replacement of a transaction's editable fields (account is fixed)."""

    id: str = Field(..., min_length=1)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


# =============================================================================
# RESULT MODELS
# =============================================================================

class OperationResult(BaseModel):
    """
    Structured outcome of a ledger operation.

    Public ledger operations never raise for expected failures; they
    return one of these so the presentation layer can render a message.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    details: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: ErrorCode,
        details: Optional[list[str]] = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            details=details or [],
        )

    def unwrap(self) -> Any:
        """Return data, or raise the LedgerError matching this failure."""
        if self.success:
            return self.data

        from moneyar.ledger.errors import error_for_result
        raise error_for_result(self)


class DashboardSummary(BaseModel):
    """Overview numbers for one user, computed from their accounts and transactions."""

    currency: str
    total_balance: Decimal
    account_count: int = Field(ge=0)
    period_start: date_type
    period_end: date_type
    period_transaction_count: int = Field(ge=0)
    period_income: Decimal
    period_expenses: Decimal
    recent_transactions: list[Transaction] = Field(default_factory=list)

    @property
    def period_net(self) -> Decimal:
        return self.period_income - self.period_expenses
