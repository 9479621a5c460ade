"""
Ledger error taxonomy.

ValidationError, AuthorizationError and NotFoundError are raised inside
the ledger service and converted to OperationResult at its public edge.
Storage failures use StorageError from the storage interface.
"""

from typing import Optional

from moneyar.models.ledger import ErrorCode, OperationResult, ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""

    code: ErrorCode = ErrorCode.STORAGE
    message: str = "Ledger operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(LedgerError):
    """Malformed input. Raised before any storage access."""

    code = ErrorCode.VALIDATION
    message = "Invalid form data"

    def __init__(
        self,
        issues: Optional[list[ValidationIssue]] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message)
        self.issues = issues or []

    @property
    def details(self) -> list[str]:
        return [f"{issue.field}: {issue.message}" for issue in self.issues]


class AuthorizationError(LedgerError):
    """No valid session, or the target belongs to another user."""

    code = ErrorCode.UNAUTHORIZED
    message = "Unauthorized"


class NotFoundError(LedgerError):
    """The targeted row does not exist."""

    code = ErrorCode.NOT_FOUND
    message = "Not found"


class AccountNotFoundError(NotFoundError):
    message = "Account not found"


class TransactionNotFoundError(NotFoundError):
    message = "Transaction not found"


def error_for_result(result: OperationResult) -> LedgerError:
    """Rebuild the exception a failed OperationResult stands for."""
    if result.error_code == ErrorCode.VALIDATION:
        issues = [
            ValidationIssue(
                field="input",
                issue_type="invalid_value",
                message=detail,
                severity="error",
            )
            for detail in result.details
        ]
        return ValidationError(issues, result.error)
    if result.error_code == ErrorCode.UNAUTHORIZED:
        return AuthorizationError(result.error)
    if result.error_code == ErrorCode.NOT_FOUND:
        if result.error == TransactionNotFoundError.message:
            return TransactionNotFoundError()
        if result.error == AccountNotFoundError.message:
            return AccountNotFoundError()
        return NotFoundError(result.error)

    # Imported here: the storage package imports the models package.
    from moneyar.services.storage.interface import StorageError
    return StorageError(result.error or "Storage operation failed")
