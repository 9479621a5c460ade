"""
Tests for the ledger service.

Test strategy:
1. Every public operation, happy path and each failure message
2. The balance invariant across create/update/delete and overrides
3. Atomicity under injected storage faults (monkeypatched unit of work)
4. Ownership isolation between two users
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from moneyar.ledger.errors import AccountNotFoundError, AuthorizationError
from moneyar.ledger.service import LedgerService
from moneyar.models.audit import AuditEventType
from moneyar.models.ledger import (
    Account,
    AccountType,
    DashboardSummary,
    ErrorCode,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from moneyar.services.auth import RequestContext
from moneyar.services.storage import (
    ConcurrentUpdateError,
    SqlAlchemyUnitOfWork,
    StorageError,
)


async def open_account(ledger, ctx, balance="100.00", name="Main", account_type="checking"):
    result = await ledger.create_account(ctx, name, account_type, Decimal(balance))
    assert result.success, result.error
    return result.data


async def record(ledger, ctx, account_id, amount, transaction_type, **overrides):
    fields = {
        "description": "Groceries",
        "category": TransactionCategory.FOOD,
        "date": date(2024, 5, 10),
    }
    fields.update(overrides)
    result = await ledger.create_transaction(
        ctx,
        account_id,
        Decimal(amount),
        fields["description"],
        fields["category"],
        transaction_type,
        fields["date"],
    )
    assert result.success, result.error
    return result.data


async def balance_of(ledger, ctx, account_id) -> Decimal:
    accounts = (await ledger.list_accounts(ctx)).unwrap()
    return next(a.balance for a in accounts if a.id == account_id)


class TestCreateThenReverseScenario:
    """Walk-through: 100 → 70 → 120 → 150 → 120."""

    async def test_balance_follows_each_step(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        assert account.balance == Decimal("100")

        expense = await record(ledger, alice, account.id, "30", "expense")
        assert await balance_of(ledger, alice, account.id) == Decimal("70")

        income = await record(ledger, alice, account.id, "50", "income", category="salary")
        assert await balance_of(ledger, alice, account.id) == Decimal("120")

        deleted = await ledger.delete_transaction(alice, expense.id)
        assert deleted.success
        assert await balance_of(ledger, alice, account.id) == Decimal("150")

        updated = await ledger.update_transaction(
            alice, income.id, Decimal("20"), income.description,
            income.category, income.type, income.date,
        )
        assert updated.success
        assert updated.data.amount == Decimal("20")
        assert await balance_of(ledger, alice, account.id) == Decimal("120")


class TestAccounts:
    """Account create/list/update/delete."""

    async def test_create_defaults_balance_to_zero(self, ledger, alice):
        result = await ledger.create_account(alice, "Wallet", AccountType.CASH)
        assert result.success
        assert isinstance(result.data, Account)
        assert result.data.balance == Decimal("0")
        assert result.data.user_id == "alice"
        assert result.data.bank is None

    async def test_create_strips_and_keeps_bank(self, ledger, alice):
        result = await ledger.create_account(alice, "  Savings  ", "savings", Decimal("10"), "  ACME Bank ")
        assert result.data.name == "Savings"
        assert result.data.bank == "ACME Bank"

    async def test_create_rejects_blank_name(self, ledger, alice):
        result = await ledger.create_account(alice, "   ", "checking", Decimal("0"))
        assert not result.success
        assert result.error == "Invalid form data"
        assert result.error_code == ErrorCode.VALIDATION
        assert any(d.startswith("name") for d in result.details)
        assert (await ledger.list_accounts(alice)).data == []

    async def test_create_rejects_unknown_type(self, ledger, alice):
        result = await ledger.create_account(alice, "Main", "piggy-bank")
        assert result.error == "Invalid form data"
        assert any(d.startswith("type") for d in result.details)

    async def test_create_rejects_sub_cent_balance(self, ledger, alice):
        result = await ledger.create_account(alice, "Main", "checking", Decimal("1.005"))
        assert result.error_code == ErrorCode.VALIDATION

    async def test_oversized_money_never_reaches_storage(self, ledger, alice):
        too_big = await ledger.create_account(
            alice, "Main", "checking", Decimal("12345678901234567.89")
        )
        assert too_big.error == "Invalid form data"
        assert too_big.error_code == ErrorCode.VALIDATION
        assert (await ledger.list_accounts(alice)).data == []

        account = await open_account(ledger, alice, "100")
        result = await ledger.create_transaction(
            alice, account.id, Decimal("98765432109876543.21"), "x", "food", "income",
            date(2024, 1, 1),
        )
        assert result.error_code == ErrorCode.VALIDATION
        assert any(d.startswith("amount") for d in result.details)
        assert (await ledger.list_transactions(alice)).data == []
        assert await balance_of(ledger, alice, account.id) == Decimal("100")

    async def test_list_is_oldest_first_and_repeatable(self, ledger, alice):
        first = await open_account(ledger, alice, name="First")
        second = await open_account(ledger, alice, name="Second")

        one = (await ledger.list_accounts(alice)).data
        two = (await ledger.list_accounts(alice)).data
        assert [a.id for a in one] == [first.id, second.id]
        assert one == two

    async def test_update_overrides_balance_and_is_audited(self, ledger, alice, audit_logger):
        account = await open_account(ledger, alice, "100")
        await record(ledger, alice, account.id, "30", "expense")

        result = await ledger.update_account(
            alice, account.id, "Main", "checking", Decimal("500"), "New Bank"
        )
        assert result.success
        assert result.data.balance == Decimal("500")
        assert result.data.bank == "New Bank"
        assert await balance_of(ledger, alice, account.id) == Decimal("500")

        override = [e for e in audit_logger.history if e.event_type == AuditEventType.BALANCE_OVERRIDDEN]
        assert len(override) == 1
        assert Decimal(override[0].details["old_balance"]) == Decimal("70")
        assert Decimal(override[0].details["new_balance"]) == Decimal("500")

    async def test_update_without_balance_change_is_not_an_override(self, ledger, alice, audit_logger):
        account = await open_account(ledger, alice, "100")
        result = await ledger.update_account(alice, account.id, "Renamed", "savings", account.balance)
        assert result.data.name == "Renamed"
        assert result.data.type == AccountType.SAVINGS
        assert not any(e.event_type == AuditEventType.BALANCE_OVERRIDDEN for e in audit_logger.history)

    async def test_transactions_after_override_build_on_it(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        await record(ledger, alice, account.id, "30", "expense")
        await ledger.update_account(alice, account.id, "Main", "checking", Decimal("1000"))
        await record(ledger, alice, account.id, "25", "income")
        assert await balance_of(ledger, alice, account.id) == Decimal("1025")

    async def test_update_missing_account(self, ledger, alice):
        result = await ledger.update_account(alice, "nope", "Main", "checking", Decimal("1"))
        assert result.error == "Account not found"
        assert result.error_code == ErrorCode.NOT_FOUND

    async def test_delete_cascades_transactions(self, ledger, alice):
        keep = await open_account(ledger, alice, name="Keep")
        drop = await open_account(ledger, alice, name="Drop")
        kept = await record(ledger, alice, keep.id, "5", "expense")
        await record(ledger, alice, drop.id, "10", "expense")
        await record(ledger, alice, drop.id, "20", "income")

        result = await ledger.delete_account(alice, drop.id)
        assert result.success

        accounts = (await ledger.list_accounts(alice)).data
        transactions = (await ledger.list_transactions(alice)).data
        assert [a.id for a in accounts] == [keep.id]
        assert [t.id for t in transactions] == [kept.id]

    async def test_delete_missing_account(self, ledger, alice):
        result = await ledger.delete_account(alice, "nope")
        assert result.error == "Account not found"


class TestTransactions:
    """Transaction lifecycle and balance arithmetic."""

    async def test_create_returns_transaction(self, ledger, alice):
        account = await open_account(ledger, alice)
        txn = await record(ledger, alice, account.id, "12.34", TransactionType.EXPENSE)
        assert isinstance(txn, Transaction)
        assert txn.amount == Decimal("12.34")
        assert txn.account_id == account.id
        assert txn.user_id == "alice"
        assert txn.date == datetime(2024, 5, 10)

    async def test_create_on_missing_account(self, ledger, alice):
        result = await ledger.create_transaction(
            alice, "nope", Decimal("1"), "x", "food", "expense", date(2024, 1, 1)
        )
        assert result.error == "Account not found"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("1.001")])
    async def test_create_rejects_bad_amount(self, ledger, alice, amount):
        account = await open_account(ledger, alice)
        result = await ledger.create_transaction(
            alice, account.id, amount, "x", "food", "expense", date(2024, 1, 1)
        )
        assert result.error == "Invalid form data"
        assert await balance_of(ledger, alice, account.id) == Decimal("100")
        assert (await ledger.list_transactions(alice)).data == []

    async def test_create_rejects_unknown_category(self, ledger, alice):
        account = await open_account(ledger, alice)
        result = await ledger.create_transaction(
            alice, account.id, Decimal("1"), "x", "gambling", "expense", date(2024, 1, 1)
        )
        assert any(d.startswith("category") for d in result.details)

    async def test_update_switching_direction(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        txn = await record(ledger, alice, account.id, "30", "expense")

        result = await ledger.update_transaction(
            alice, txn.id, Decimal("30"), txn.description, txn.category, "income", txn.date
        )
        assert result.data.type == TransactionType.INCOME
        assert await balance_of(ledger, alice, account.id) == Decimal("130")

    async def test_update_date_only_leaves_balance(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        txn = await record(ledger, alice, account.id, "30", "expense")

        result = await ledger.update_transaction(
            alice, txn.id, txn.amount, "Moved", txn.category, txn.type, date(2024, 6, 1)
        )
        assert result.data.date == datetime(2024, 6, 1)
        assert result.data.description == "Moved"
        assert await balance_of(ledger, alice, account.id) == Decimal("70")

    async def test_update_uses_stored_values(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        txn = await record(ledger, alice, account.id, "30", "expense")
        # two edits in a row; each must diff against what is stored now
        await ledger.update_transaction(alice, txn.id, Decimal("40"), "x", "food", "expense", txn.date)
        await ledger.update_transaction(alice, txn.id, Decimal("10"), "x", "food", "expense", txn.date)
        assert await balance_of(ledger, alice, account.id) == Decimal("90")

    async def test_update_missing_transaction(self, ledger, alice):
        result = await ledger.update_transaction(
            alice, "nope", Decimal("1"), "x", "food", "expense", date(2024, 1, 1)
        )
        assert result.error == "Transaction not found"

    async def test_delete_missing_transaction(self, ledger, alice):
        result = await ledger.delete_transaction(alice, "nope")
        assert result.error == "Transaction not found"

    async def test_list_filters_by_account_in_date_order(self, ledger, alice):
        main = await open_account(ledger, alice, name="Main")
        other = await open_account(ledger, alice, name="Other")
        late = await record(ledger, alice, main.id, "1", "expense", date=date(2024, 3, 1))
        early = await record(ledger, alice, main.id, "1", "expense", date=date(2024, 1, 1))
        await record(ledger, alice, other.id, "1", "expense")

        result = await ledger.list_transactions(alice, account_id=main.id)
        assert [t.id for t in result.data] == [early.id, late.id]
        assert len((await ledger.list_transactions(alice)).data) == 3

    async def test_list_is_repeatable(self, ledger, alice):
        account = await open_account(ledger, alice)
        await record(ledger, alice, account.id, "3", "expense")
        first = (await ledger.list_transactions(alice)).data
        second = (await ledger.list_transactions(alice)).data
        assert first == second

    async def test_balance_invariant_over_mixed_history(self, ledger, alice):
        account = await open_account(ledger, alice, "0")
        a = await record(ledger, alice, account.id, "100", "income")
        b = await record(ledger, alice, account.id, "40", "expense")
        c = await record(ledger, alice, account.id, "15.50", "expense")
        await ledger.update_transaction(alice, b.id, Decimal("45"), "x", "food", "expense", b.date)
        await ledger.delete_transaction(alice, c.id)
        await ledger.update_transaction(alice, a.id, Decimal("100"), "x", "salary", "expense", a.date)

        transactions = (await ledger.list_transactions(alice, account_id=account.id)).data
        expected = sum((t.signed_amount for t in transactions), Decimal("0"))
        assert expected == Decimal("-145")
        assert await balance_of(ledger, alice, account.id) == expected


class TestAuthorization:
    """Missing sessions and cross-user access."""

    @pytest.mark.parametrize("call", [
        lambda svc: svc.create_account(None, "Main", "checking"),
        lambda svc: svc.list_accounts(None),
        lambda svc: svc.update_account(None, "id", "Main", "checking", Decimal("1")),
        lambda svc: svc.delete_account(None, "id"),
        lambda svc: svc.create_transaction(None, "id", Decimal("1"), "x", "food", "expense", date(2024, 1, 1)),
        lambda svc: svc.list_transactions(None),
        lambda svc: svc.update_transaction(None, "id", Decimal("1"), "x", "food", "expense", date(2024, 1, 1)),
        lambda svc: svc.delete_transaction(None, "id"),
        lambda svc: svc.get_dashboard(None),
    ])
    async def test_no_session_is_unauthorized(self, ledger, audit_logger, call):
        result = await call(ledger)
        assert not result.success
        assert result.error == "Unauthorized"
        assert result.error_code == ErrorCode.UNAUTHORIZED
        assert audit_logger.history[-1].event_type == AuditEventType.AUTHORIZATION_DENIED

    async def test_no_session_checked_before_validation(self, ledger):
        result = await ledger.create_account(None, "", "not-a-type")
        assert result.error == "Unauthorized"

    async def test_cannot_update_someone_elses_account(self, ledger, alice, bob):
        account = await open_account(ledger, bob, "100")
        result = await ledger.update_account(alice, account.id, "Mine", "checking", Decimal("0"))
        assert result.error == "Unauthorized"
        assert await balance_of(ledger, bob, account.id) == Decimal("100")

    async def test_cannot_delete_someone_elses_account(self, ledger, alice, bob):
        account = await open_account(ledger, bob)
        result = await ledger.delete_account(alice, account.id)
        assert result.error == "Unauthorized"
        assert len((await ledger.list_accounts(bob)).data) == 1

    async def test_cannot_post_to_someone_elses_account(self, ledger, alice, bob):
        account = await open_account(ledger, bob, "100")
        result = await ledger.create_transaction(
            alice, account.id, Decimal("5"), "x", "food", "expense", date(2024, 1, 1)
        )
        assert result.error == "Account not found"
        assert await balance_of(ledger, bob, account.id) == Decimal("100")

    async def test_cannot_touch_someone_elses_transaction(self, ledger, alice, bob):
        account = await open_account(ledger, bob, "100")
        txn = await record(ledger, bob, account.id, "10", "expense")

        updated = await ledger.update_transaction(
            alice, txn.id, Decimal("99"), "x", "food", "expense", txn.date
        )
        deleted = await ledger.delete_transaction(alice, txn.id)
        assert updated.error == "Transaction not found"
        assert deleted.error == "Transaction not found"
        assert await balance_of(ledger, bob, account.id) == Decimal("90")

    async def test_reads_are_owner_scoped(self, ledger, alice, bob):
        account = await open_account(ledger, bob)
        await record(ledger, bob, account.id, "10", "expense")

        assert (await ledger.list_accounts(alice)).data == []
        assert (await ledger.list_transactions(alice)).data == []
        assert (await ledger.list_transactions(alice, account_id=account.id)).data == []

    async def test_unwrap_raises_matching_error(self, ledger, alice, bob):
        account = await open_account(ledger, bob)
        with pytest.raises(AuthorizationError):
            (await ledger.delete_account(alice, account.id)).unwrap()
        with pytest.raises(AccountNotFoundError):
            (await ledger.delete_account(alice, "nope")).unwrap()


class TestAtomicity:
    """A failure between the row write and the balance write leaves no trace."""

    async def test_create_rolls_back(self, ledger, alice, monkeypatch):
        account = await open_account(ledger, alice, "100")
        monkeypatch.setattr(
            SqlAlchemyUnitOfWork, "set_account_balance",
            self._raiser(StorageError("simulated fault")),
        )

        result = await ledger.create_transaction(
            alice, account.id, Decimal("30"), "x", "food", "expense", date(2024, 1, 1)
        )
        assert not result.success
        assert result.error == "Failed to create transaction"
        assert result.error_code == ErrorCode.STORAGE

        monkeypatch.undo()
        assert (await ledger.list_transactions(alice)).data == []
        assert await balance_of(ledger, alice, account.id) == Decimal("100")

    async def test_update_rolls_back(self, ledger, alice, monkeypatch):
        account = await open_account(ledger, alice, "100")
        txn = await record(ledger, alice, account.id, "30", "expense")
        monkeypatch.setattr(
            SqlAlchemyUnitOfWork, "set_account_balance",
            self._raiser(OperationalError("UPDATE accounts", {}, Exception("disk I/O error"))),
        )

        result = await ledger.update_transaction(
            alice, txn.id, Decimal("80"), "changed", "food", "expense", txn.date
        )
        assert result.error == "Failed to update transaction"

        monkeypatch.undo()
        stored = (await ledger.list_transactions(alice)).data
        assert stored[0].amount == Decimal("30")
        assert stored[0].description == "Groceries"
        assert await balance_of(ledger, alice, account.id) == Decimal("70")

    async def test_delete_rolls_back(self, ledger, alice, monkeypatch):
        account = await open_account(ledger, alice, "100")
        txn = await record(ledger, alice, account.id, "30", "expense")
        monkeypatch.setattr(
            SqlAlchemyUnitOfWork, "set_account_balance",
            self._raiser(StorageError("simulated fault")),
        )

        result = await ledger.delete_transaction(alice, txn.id)
        assert result.error == "Failed to delete transaction"

        monkeypatch.undo()
        assert [t.id for t in (await ledger.list_transactions(alice)).data] == [txn.id]
        assert await balance_of(ledger, alice, account.id) == Decimal("70")

    async def test_storage_failure_is_audited(self, ledger, alice, audit_logger, monkeypatch):
        account = await open_account(ledger, alice)
        monkeypatch.setattr(
            SqlAlchemyUnitOfWork, "set_account_balance",
            self._raiser(StorageError("simulated fault")),
        )
        await ledger.create_transaction(
            alice, account.id, Decimal("1"), "x", "food", "expense", date(2024, 1, 1)
        )
        assert audit_logger.history[-1].event_type == AuditEventType.STORAGE_FAILED

    @staticmethod
    def _raiser(exc):
        async def raise_it(self, *args, **kwargs):
            raise exc
        return raise_it


class TestConflictRetry:
    """Version conflicts re-run the whole atomic section."""

    async def test_conflict_once_then_success(self, ledger, alice, audit_logger, monkeypatch):
        account = await open_account(ledger, alice, "100")
        original = SqlAlchemyUnitOfWork.set_account_balance
        calls = []

        async def flaky(self, account_id, balance, expected_version):
            calls.append(balance)
            if len(calls) == 1:
                raise ConcurrentUpdateError("simulated conflict")
            return await original(self, account_id, balance, expected_version)

        monkeypatch.setattr(SqlAlchemyUnitOfWork, "set_account_balance", flaky)
        result = await ledger.create_transaction(
            alice, account.id, Decimal("30"), "x", "food", "expense", date(2024, 1, 1)
        )
        monkeypatch.undo()

        assert result.success
        assert len(calls) == 2
        assert len((await ledger.list_transactions(alice)).data) == 1
        assert await balance_of(ledger, alice, account.id) == Decimal("70")
        assert any(
            e.event_type == AuditEventType.CONCURRENT_UPDATE_RETRIED
            for e in audit_logger.history
        )

    async def test_persistent_conflict_gives_up(self, ledger, alice, ledger_settings, monkeypatch):
        account = await open_account(ledger, alice, "100")
        calls = []

        async def always_conflict(self, account_id, balance, expected_version):
            calls.append(balance)
            raise ConcurrentUpdateError("simulated conflict")

        monkeypatch.setattr(SqlAlchemyUnitOfWork, "set_account_balance", always_conflict)
        result = await ledger.create_transaction(
            alice, account.id, Decimal("30"), "x", "food", "expense", date(2024, 1, 1)
        )
        monkeypatch.undo()

        assert result.error == "Failed to create transaction"
        assert len(calls) == ledger_settings.conflict_retry_attempts
        assert (await ledger.list_transactions(alice)).data == []
        assert await balance_of(ledger, alice, account.id) == Decimal("100")

    async def test_concurrent_writers_never_lose_an_update(
        self, storage, audit_logger, ledger_settings, alice
    ):
        writers = 5
        ledger = LedgerService(
            storage,
            audit_logger=audit_logger,
            settings=ledger_settings.model_copy(update={"conflict_retry_attempts": writers * 2}),
        )
        await ledger.register_user("alice", email="alice@example.com")
        account = await open_account(ledger, alice, "100")

        results = await asyncio.gather(*(
            ledger.create_transaction(
                alice, account.id, Decimal("10"), f"coffee {n}", "food", "expense",
                date(2024, 1, 1),
            )
            for n in range(writers)
        ))

        assert [r.error for r in results] == [None] * writers
        assert len((await ledger.list_transactions(alice)).data) == writers
        assert await balance_of(ledger, alice, account.id) == Decimal("50")

    async def test_concurrent_create_and_delete_keep_balance_consistent(self, ledger, alice):
        account = await open_account(ledger, alice, "100")
        existing = await record(ledger, alice, account.id, "40", "expense")

        await asyncio.gather(
            ledger.delete_transaction(alice, existing.id),
            ledger.create_transaction(
                alice, account.id, Decimal("25"), "refund", "other", "income", date(2024, 1, 1)
            ),
        )

        stored = (await ledger.list_transactions(alice)).data
        net = sum(
            (t.amount if t.type == TransactionType.INCOME else -t.amount for t in stored),
            Decimal("0"),
        )
        assert await balance_of(ledger, alice, account.id) == Decimal("100") + net


class TestDashboard:
    """Dashboard overview."""

    async def test_summary_for_current_month(self, ledger, alice):
        main = await open_account(ledger, alice, "100", name="Main")
        await open_account(ledger, alice, "50", name="Cash", account_type="cash")
        await record(ledger, alice, main.id, "30", "expense", date=date(2024, 5, 2))
        await record(ledger, alice, main.id, "200", "income", date=date(2024, 5, 20))
        await record(ledger, alice, main.id, "10", "expense", date=date(2024, 4, 30))

        result = await ledger.get_dashboard(alice, today=date(2024, 5, 15))
        summary = result.data
        assert isinstance(summary, DashboardSummary)
        assert summary.currency == "USD"
        assert summary.total_balance == Decimal("310")
        assert summary.account_count == 2
        assert summary.period_transaction_count == 2
        assert summary.period_income == Decimal("200")
        assert summary.period_expenses == Decimal("30")
        assert summary.period_net == Decimal("170")
        assert [t.date.day for t in summary.recent_transactions] == [20, 2, 30]

    async def test_summary_is_owner_scoped(self, ledger, alice, bob):
        await open_account(ledger, bob, "999")
        summary = (await ledger.get_dashboard(alice)).data
        assert summary.account_count == 0
        assert summary.total_balance == Decimal("0")


class TestRegisterUser:
    """User rows for identity-provider ids."""

    async def test_register_is_idempotent(self, ledger):
        assert (await ledger.register_user("carol", email="carol@example.com")).success
        assert (await ledger.register_user("carol", email="carol@example.com")).success

    async def test_register_requires_id(self, ledger):
        result = await ledger.register_user("")
        assert result.error == "Unauthorized"

    async def test_registered_user_can_open_accounts(self, ledger):
        await ledger.register_user("carol")
        result = await ledger.create_account(RequestContext(user_id="carol"), "Main", "checking")
        assert result.success

    async def test_unregistered_user_cannot_open_accounts(self, ledger):
        result = await ledger.create_account(RequestContext(user_id="ghost"), "Main", "checking")
        assert result.error == "Failed to create account"
        assert result.error_code == ErrorCode.STORAGE
