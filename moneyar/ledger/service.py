"""
Ledger Service

Owns accounts and transactions and keeps every account balance consistent
with the net effect of its transactions.

DESIGN DECISION: Every transaction mutation is ONE atomic section:
- the transaction row write and the account balance write share a
  single storage transaction (both commit or neither does)
- the account is re-read inside that section (locked where the store
  supports it) and the adjustment is computed from STORED values,
  never from anything the client claims was there before
- an optimistic version conflict on the account re-runs the whole
  section; any other storage failure is surfaced, never retried

Public operations never raise for expected failures. They return an
OperationResult carrying the same messages the UI shows ("Unauthorized",
"Account not found", "Invalid form data", ...).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import uuid4

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from moneyar.audit import AuditLogger
from moneyar.config import LedgerSettings, get_settings
from moneyar.ledger.balance import adjustment_delta, creation_delta, reversal_delta
from moneyar.ledger.errors import (
    AccountNotFoundError,
    AuthorizationError,
    LedgerError,
    TransactionNotFoundError,
    ValidationError,
)
from moneyar.models.audit import AuditEventType
from moneyar.models.ledger import (
    Account,
    CreateAccountInput,
    CreateTransactionInput,
    DashboardSummary,
    ErrorCode,
    OperationResult,
    Transaction,
    UpdateAccountInput,
    UpdateTransactionInput,
)
from moneyar.queries.summary import build_dashboard_summary
from moneyar.services.auth import RequestContext
from moneyar.services.storage import (
    ConcurrentUpdateError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
)
from moneyar.validation import LedgerValidator


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def generate_id() -> str:
    return str(uuid4())


class LedgerService:
    """
    Create/read/update/delete for accounts and transactions.

    Every call takes the caller's RequestContext first; None means the
    caller has no session and is answered with "Unauthorized".
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator(self._settings)

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _require_context(
        self,
        ctx: Optional[RequestContext],
        operation: str,
    ) -> RequestContext:
        if ctx is None:
            self._audit.log_authorization_denied(operation=operation, user_id=None)
            raise AuthorizationError()
        return ctx

    def _validate(
        self,
        schema: type[T],
        data: dict[str, Any],
        operation: str,
        ctx: RequestContext,
    ) -> T:
        try:
            parsed, warnings = self._validator.validate(schema, data)
        except ValidationError as e:
            self._audit.log_validation_failed(
                operation=operation,
                user_id=ctx.user_id,
                issues=[issue.model_dump() for issue in e.issues],
                correlation_id=ctx.correlation_id,
            )
            raise
        for issue in warnings:
            logger.warning(
                "ledger_input_warning",
                operation=operation,
                field=issue.field,
                message=issue.message,
                user_id=ctx.user_id,
            )
        return parsed

    def _deny(self, operation: str, ctx: RequestContext, entity_id: str) -> AuthorizationError:
        self._audit.log_authorization_denied(
            operation=operation,
            user_id=ctx.user_id,
            entity_id=entity_id,
            correlation_id=ctx.correlation_id,
        )
        return AuthorizationError()

    async def _run(
        self,
        operation: str,
        failure_message: str,
        ctx: Optional[RequestContext],
        call: Callable[[], Awaitable[Any]],
    ) -> OperationResult:
        """Execute an operation body and fold any failure into an OperationResult."""
        user_id = ctx.user_id if ctx else None
        try:
            return OperationResult.ok(await call())
        except ValidationError as e:
            logger.warning("ledger_invalid_input", operation=operation, details=e.details)
            return OperationResult.fail(e.message, e.code, e.details)
        except LedgerError as e:
            logger.warning(
                "ledger_operation_rejected",
                operation=operation,
                error=e.message,
                user_id=user_id,
            )
            return OperationResult.fail(e.message, e.code)
        except StorageError as e:
            logger.error("ledger_storage_failed", operation=operation, error=str(e))
            self._audit.log_storage_failed(
                operation=operation,
                error_message=str(e),
                user_id=user_id,
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return OperationResult.fail(failure_message, ErrorCode.STORAGE)
        except Exception as e:
            logger.exception("ledger_unexpected_error", operation=operation)
            self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return OperationResult.fail(failure_message, ErrorCode.STORAGE)

    async def _in_unit_of_work(
        self,
        section: Callable[[LedgerUnitOfWork], Awaitable[T]],
    ) -> T:
        async with self._storage.unit_of_work() as uow:
            return await section(uow)

    async def _atomic(
        self,
        operation: str,
        ctx: RequestContext,
        section: Callable[[LedgerUnitOfWork], Awaitable[T]],
    ) -> T:
        """
        Run section in one unit of work, re-running it on a version conflict.

        Only ConcurrentUpdateError is retried. Each attempt starts a fresh
        storage transaction, so a rolled-back attempt leaves no trace.
        """
        def log_conflict(retry_state: RetryCallState) -> None:
            self._audit.log_concurrent_update_retried(
                operation=operation,
                attempt=retry_state.attempt_number,
                user_id=ctx.user_id,
                correlation_id=ctx.correlation_id,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ConcurrentUpdateError),
            stop=stop_after_attempt(self._settings.conflict_retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            before_sleep=log_conflict,
            reraise=True,
        )
        return await retrying(self._in_unit_of_work, section)

    # =========================================================================
    # Users
    # =========================================================================

    async def register_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> OperationResult:
        """Make sure the identity provider's user exists in the users table."""
        async def call() -> None:
            if not user_id:
                raise AuthorizationError()

            async def section(uow: LedgerUnitOfWork) -> None:
                await uow.ensure_user(user_id, email=email, name=name)

            await self._in_unit_of_work(section)

        return await self._run(
            "register_user",
            "Failed to register user",
            RequestContext(user_id=user_id) if user_id else None,
            call,
        )

    # =========================================================================
    # Accounts
    # =========================================================================

    async def create_account(
        self,
        ctx: Optional[RequestContext],
        name: str,
        account_type: Any,
        balance: Any = None,
        bank: Optional[str] = None,
    ) -> OperationResult:
        """
        Open an account with an explicit initial balance (0 if absent).

        Returns:
            OperationResult with the created Account as data
        """
        operation = "create_account"

        async def call() -> Account:
            req = self._require_context(ctx, operation)
            data: dict[str, Any] = {"name": name, "type": account_type, "bank": bank}
            if balance is not None:
                data["balance"] = balance
            parsed = self._validate(CreateAccountInput, data, operation, req)

            account = Account(
                id=generate_id(),
                name=parsed.name,
                type=parsed.type,
                balance=parsed.balance,
                bank=parsed.bank,
                user_id=req.user_id,
            )

            async def section(uow: LedgerUnitOfWork) -> Account:
                return await uow.add_account(account)

            created = await self._in_unit_of_work(section)
            self._audit.log_account_created(
                account_id=created.id,
                user_id=req.user_id,
                name=created.name,
                balance=created.balance,
                correlation_id=req.correlation_id,
            )
            return created

        return await self._run(operation, "Failed to create account", ctx, call)

    async def list_accounts(self, ctx: Optional[RequestContext]) -> OperationResult:
        """All of the caller's accounts, oldest first."""
        operation = "list_accounts"

        async def call() -> list[Account]:
            req = self._require_context(ctx, operation)

            async def section(uow: LedgerUnitOfWork) -> list[Account]:
                return await uow.list_accounts(req.user_id)

            return await self._in_unit_of_work(section)

        return await self._run(operation, "Failed to fetch accounts", ctx, call)

    async def update_account(
        self,
        ctx: Optional[RequestContext],
        account_id: str,
        name: str,
        account_type: Any,
        balance: Any,
        bank: Optional[str] = None,
    ) -> OperationResult:
        """
        Overwrite every editable field of an account.

        The balance given here replaces the stored one outright: it is the
        manual-correction escape hatch and is audited as such.

        Errors:
            "Account not found" if no row has this id,
            "Unauthorized" if the row belongs to someone else.
        """
        operation = "update_account"

        async def call() -> Account:
            req = self._require_context(ctx, operation)
            parsed = self._validate(
                UpdateAccountInput,
                {
                    "id": account_id,
                    "name": name,
                    "type": account_type,
                    "balance": balance,
                    "bank": bank,
                },
                operation,
                req,
            )

            async def section(uow: LedgerUnitOfWork) -> tuple[Account, Account]:
                # look up by id alone so "missing" and "not yours" stay distinct
                existing = await uow.get_account(parsed.id)
                if existing is None:
                    raise AccountNotFoundError()
                if existing.user_id != req.user_id:
                    raise self._deny(operation, req, parsed.id)
                replacement = existing.model_copy(update={
                    "name": parsed.name,
                    "type": parsed.type,
                    "balance": parsed.balance,
                    "bank": parsed.bank,
                })
                return existing, await uow.update_account(replacement)

            before, after = await self._atomic(operation, req, section)

            changed = [
                field for field in ("name", "type", "balance", "bank")
                if getattr(before, field) != getattr(after, field)
            ]
            self._audit.log_account_updated(
                account_id=after.id,
                user_id=req.user_id,
                changed_fields=changed,
                correlation_id=req.correlation_id,
            )
            if "balance" in changed:
                self._audit.log_balance_overridden(
                    account_id=after.id,
                    user_id=req.user_id,
                    old_balance=before.balance,
                    new_balance=after.balance,
                    correlation_id=req.correlation_id,
                )
            return after

        return await self._run(operation, "Failed to update account", ctx, call)

    async def delete_account(
        self,
        ctx: Optional[RequestContext],
        account_id: str,
    ) -> OperationResult:
        """
        Delete an account and, through the store's cascade, all its transactions.

        Irreversible. Same ownership checks as update_account.
        """
        operation = "delete_account"

        async def call() -> None:
            req = self._require_context(ctx, operation)

            async def section(uow: LedgerUnitOfWork) -> None:
                existing = await uow.get_account(account_id)
                if existing is None:
                    raise AccountNotFoundError()
                if existing.user_id != req.user_id:
                    raise self._deny(operation, req, account_id)
                if not await uow.delete_account(account_id):
                    raise AccountNotFoundError()

            await self._in_unit_of_work(section)
            self._audit.log_account_deleted(
                account_id=account_id,
                user_id=req.user_id,
                correlation_id=req.correlation_id,
            )

        return await self._run(operation, "Failed to delete account", ctx, call)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction(
        self,
        ctx: Optional[RequestContext],
        account_id: str,
        amount: Any,
        description: str,
        category: Any,
        transaction_type: Any,
        date: Union[datetime, date],
    ) -> OperationResult:
        """
        Record a transaction and move its account's balance, atomically.

        The account must belong to the caller; a foreign or missing account
        both answer "Account not found".

        Returns:
            OperationResult with the created Transaction as data
        """
        operation = "create_transaction"

        async def call() -> Transaction:
            req = self._require_context(ctx, operation)
            parsed = self._validate(
                CreateTransactionInput,
                {
                    "account_id": account_id,
                    "amount": amount,
                    "description": description,
                    "category": category,
                    "type": transaction_type,
                    "date": date,
                },
                operation,
                req,
            )
            transaction_id = generate_id()
            delta = creation_delta(parsed.type, parsed.amount)

            async def section(uow: LedgerUnitOfWork) -> tuple[Transaction, Decimal]:
                account = await uow.get_owned_account(
                    parsed.account_id, req.user_id, for_update=True
                )
                if account is None:
                    raise AccountNotFoundError()
                created = await uow.add_transaction(Transaction(
                    id=transaction_id,
                    amount=parsed.amount,
                    description=parsed.description,
                    category=parsed.category,
                    type=parsed.type,
                    date=parsed.date,
                    account_id=account.id,
                    user_id=req.user_id,
                ))
                updated = await uow.set_account_balance(
                    account.id, account.balance + delta, account.version
                )
                return created, updated.balance

            created, new_balance = await self._atomic(operation, req, section)
            self._audit.log_transaction_applied(
                event_type=AuditEventType.TRANSACTION_CREATED,
                transaction_id=created.id,
                account_id=created.account_id,
                user_id=req.user_id,
                balance_delta=delta,
                new_balance=new_balance,
                correlation_id=req.correlation_id,
            )
            return created

        return await self._run(operation, "Failed to create transaction", ctx, call)

    async def list_transactions(
        self,
        ctx: Optional[RequestContext],
        account_id: Optional[str] = None,
    ) -> OperationResult:
        """
        The caller's transactions, optionally for one account.

        Ordered by the transaction's own date ascending; use
        queries.sort_recent for a latest-first view.
        """
        operation = "list_transactions"

        async def call() -> list[Transaction]:
            req = self._require_context(ctx, operation)

            async def section(uow: LedgerUnitOfWork) -> list[Transaction]:
                return await uow.list_transactions(req.user_id, account_id=account_id)

            return await self._in_unit_of_work(section)

        return await self._run(operation, "Failed to fetch transactions", ctx, call)

    async def update_transaction(
        self,
        ctx: Optional[RequestContext],
        transaction_id: str,
        amount: Any,
        description: str,
        category: Any,
        transaction_type: Any,
        date: Union[datetime, date],
    ) -> OperationResult:
        """
        Overwrite a transaction and apply the balance difference, atomically.

        The adjustment is new effect minus STORED old effect. Changing only
        the date (or description/category) leaves the balance alone.
        """
        operation = "update_transaction"

        async def call() -> Transaction:
            req = self._require_context(ctx, operation)
            parsed = self._validate(
                UpdateTransactionInput,
                {
                    "id": transaction_id,
                    "amount": amount,
                    "description": description,
                    "category": category,
                    "type": transaction_type,
                    "date": date,
                },
                operation,
                req,
            )

            async def section(uow: LedgerUnitOfWork) -> tuple[Transaction, Decimal, Decimal]:
                existing = await uow.get_owned_transaction(parsed.id, req.user_id)
                if existing is None:
                    raise TransactionNotFoundError()
                account = await uow.get_owned_account(
                    existing.account_id, req.user_id, for_update=True
                )
                if account is None:
                    # the row points at an account the caller does not own
                    logger.error(
                        "ledger_integrity_error",
                        transaction_id=existing.id,
                        account_id=existing.account_id,
                    )
                    raise AccountNotFoundError()

                delta = adjustment_delta(
                    existing.type, existing.amount, parsed.type, parsed.amount
                )
                updated = await uow.update_transaction(existing.model_copy(update={
                    "amount": parsed.amount,
                    "description": parsed.description,
                    "category": parsed.category,
                    "type": parsed.type,
                    "date": parsed.date,
                }))
                new_balance = account.balance
                if delta:
                    new_balance = (
                        await uow.set_account_balance(
                            account.id, account.balance + delta, account.version
                        )
                    ).balance
                return updated, delta, new_balance

            updated, delta, new_balance = await self._atomic(operation, req, section)
            self._audit.log_transaction_applied(
                event_type=AuditEventType.TRANSACTION_UPDATED,
                transaction_id=updated.id,
                account_id=updated.account_id,
                user_id=req.user_id,
                balance_delta=delta,
                new_balance=new_balance,
                correlation_id=req.correlation_id,
            )
            return updated

        return await self._run(operation, "Failed to update transaction", ctx, call)

    async def delete_transaction(
        self,
        ctx: Optional[RequestContext],
        transaction_id: str,
    ) -> OperationResult:
        """Delete a transaction and reverse its effect on the balance, atomically."""
        operation = "delete_transaction"

        async def call() -> None:
            req = self._require_context(ctx, operation)

            async def section(uow: LedgerUnitOfWork) -> tuple[Transaction, Decimal, Decimal]:
                existing = await uow.get_owned_transaction(transaction_id, req.user_id)
                if existing is None:
                    raise TransactionNotFoundError()
                account = await uow.get_owned_account(
                    existing.account_id, req.user_id, for_update=True
                )
                if account is None:
                    logger.error(
                        "ledger_integrity_error",
                        transaction_id=existing.id,
                        account_id=existing.account_id,
                    )
                    raise AccountNotFoundError()

                delta = reversal_delta(existing.type, existing.amount)
                if not await uow.delete_transaction(existing.id):
                    raise TransactionNotFoundError()
                updated = await uow.set_account_balance(
                    account.id, account.balance + delta, account.version
                )
                return existing, delta, updated.balance

            removed, delta, new_balance = await self._atomic(operation, req, section)
            self._audit.log_transaction_applied(
                event_type=AuditEventType.TRANSACTION_DELETED,
                transaction_id=removed.id,
                account_id=removed.account_id,
                user_id=req.user_id,
                balance_delta=delta,
                new_balance=new_balance,
                correlation_id=req.correlation_id,
            )

        return await self._run(operation, "Failed to delete transaction", ctx, call)

    # =========================================================================
    # Read models
    # =========================================================================

    async def get_dashboard(
        self,
        ctx: Optional[RequestContext],
        today: Optional[date] = None,
    ) -> OperationResult:
        """
        Overview for the caller: total balance, this month's figures and
        the latest transactions.

        Returns:
            OperationResult with a DashboardSummary as data
        """
        operation = "get_dashboard"

        async def call() -> DashboardSummary:
            req = self._require_context(ctx, operation)

            async def section(
                uow: LedgerUnitOfWork,
            ) -> tuple[list[Account], list[Transaction]]:
                return (
                    await uow.list_accounts(req.user_id),
                    await uow.list_transactions(req.user_id),
                )

            accounts, transactions = await self._in_unit_of_work(section)
            return build_dashboard_summary(
                accounts,
                transactions,
                currency=self._settings.currency,
                today=today,
                recent_limit=self._settings.recent_activity_limit,
            )

        return await self._run(operation, "Failed to load dashboard", ctx, call)
