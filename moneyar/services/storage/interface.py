"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for PostgreSQL (or anything with an async SQLAlchemy driver)
2. Keep the balance arithmetic in the ledger service, not in SQL
3. Inject faults in tests at a single seam

The interface is intentionally small: a unit of work that is one
all-or-nothing storage transaction, plus the row operations the ledger
needs inside it. Everything read or written through one unit of work
commits together or not at all.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Optional

from moneyar.models.ledger import Account, Transaction


class LedgerUnitOfWork(ABC):
    """
    Row operations available inside one storage transaction.

    Nothing here commits; the owning storage commits when the unit of
    work exits cleanly and rolls back when it exits with an exception.
    """

    @abstractmethod
    async def ensure_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        """Create the user row if it does not exist yet."""
        pass

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_account(self, account: Account) -> Account:
        """
        Insert a new account.

        Raises:
            StorageError: If the insert fails (e.g. unknown user)
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """
        Look an account up by ID alone, whoever owns it.

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_owned_account(
        self,
        account_id: str,
        owner_id: str,
        for_update: bool = False,
    ) -> Optional[Account]:
        """
        Look an account up by ID and owner together.

        Args:
            account_id: The account's identifier
            owner_id: Only match if the account belongs to this user
            for_update: Lock the row until the unit of work ends

        Returns:
            The account if it exists and is owned by owner_id, None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(self, owner_id: str) -> list[Account]:
        """All accounts of one user, oldest first."""
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> Account:
        """
        Overwrite name, type, balance and bank of an existing account.

        account.version must be the version that was read.

        Raises:
            ConcurrentUpdateError: If the row changed since it was read
        """
        pass

    @abstractmethod
    async def set_account_balance(
        self,
        account_id: str,
        balance: Decimal,
        expected_version: int,
    ) -> Account:
        """
        Write a new balance for an account read earlier in this unit of work.

        Args:
            account_id: Account to write
            balance: The new absolute balance
            expected_version: Account.version as it was read

        Raises:
            ConcurrentUpdateError: If the row changed since it was read
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        """
        Delete an account; the store cascades to its transactions.

        Returns:
            True if a row was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a new transaction row."""
        pass

    @abstractmethod
    async def get_owned_transaction(
        self,
        transaction_id: str,
        owner_id: str,
    ) -> Optional[Transaction]:
        """
        Look a transaction up by ID and owner together.

        Returns:
            The transaction if it exists and is owned by owner_id, None otherwise
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """Overwrite amount, description, category, type and date of a transaction."""
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Delete one transaction row.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
    ) -> list[Transaction]:
        """
        Transactions of one user, optionally for one account.

        Ordered by the user-supplied date ascending (not creation time).
        """
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation must provide an atomic unit of work.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[LedgerUnitOfWork]:
        """
        Open one all-or-nothing storage transaction.

        Usage:
            async with storage.unit_of_work() as uow:
                account = await uow.get_owned_account(...)
                ...

        Raises:
            ConcurrentUpdateError: On an optimistic version conflict
            StorageError: If anything else in the store fails
        """
        pass

    @abstractmethod
    async def init_schema(self) -> None:
        """Create tables if they do not exist."""
        pass

    @abstractmethod
    async def dispose(self) -> None:
        """Release connections."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ConcurrentUpdateError(StorageError):
    """The account row was changed by someone else between read and write."""
    pass
