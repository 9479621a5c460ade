"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational store with real transactions is used because
the ledger's core guarantee (a transaction row and its balance change
commit together) needs an atomic multi-statement primitive.

- One async engine per storage instance
- One AsyncSession per unit of work: commit on success, rollback on error
- SQLite gets PRAGMA foreign_keys=ON on every connection, otherwise the
  accounts -> transactions cascade is silently not enforced
- Optimistic versioning on accounts turns lost balance updates into
  ConcurrentUpdateError instead of silent drift
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import delete, event, select
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError

from moneyar.config import get_settings
from moneyar.models.ledger import Account, Transaction, utcnow
from moneyar.services.storage.interface import (
    ConcurrentUpdateError,
    ConnectionError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
)
from moneyar.services.storage.tables import (
    AccountRow,
    Base,
    TransactionRow,
    UserRow,
)


logger = structlog.get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_from_settings(
    url: Optional[str] = None,
    echo: Optional[bool] = None,
) -> AsyncEngine:
    """
    Build the async engine.

    Explicit arguments win over DATABASE_* settings.
    """
    settings = get_settings().database
    engine = create_async_engine(
        url or settings.url,
        echo=settings.echo if echo is None else echo,
        pool_pre_ping=settings.pool_pre_ping,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class SqlAlchemyUnitOfWork(LedgerUnitOfWork):
    """
    Row operations bound to one AsyncSession.

    Rows are converted to pydantic models on the way out, so nothing
    outside this module ever holds an ORM object.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def ensure_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        user = await self._session.get(UserRow, user_id)
        if user:
            if email and user.email != email:
                user.email = email
            if name and user.name != name:
                user.name = name
            await self._session.flush()
            return
        self._session.add(UserRow(id=user_id, email=email, name=name, created_at=utcnow()))
        await self._session.flush()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def add_account(self, account: Account) -> Account:
        row = AccountRow(
            id=account.id,
            name=account.name,
            type=account.type.value,
            balance=account.balance,
            bank=account.bank,
            user_id=account.user_id,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )
        self._session.add(row)
        await self._session.flush()
        return Account.model_validate(row)

    async def get_account(self, account_id: str) -> Optional[Account]:
        row = await self._session.get(AccountRow, account_id)
        return Account.model_validate(row) if row else None

    async def get_owned_account(
        self,
        account_id: str,
        owner_id: str,
        for_update: bool = False,
    ) -> Optional[Account]:
        stmt = select(AccountRow).where(
            AccountRow.id == account_id,
            AccountRow.user_id == owner_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        res = await self._session.execute(stmt)
        row = res.scalar_one_or_none()
        return Account.model_validate(row) if row else None

    async def list_accounts(self, owner_id: str) -> list[Account]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.user_id == owner_id)
            .order_by(AccountRow.created_at.asc(), AccountRow.id.asc())
        )
        res = await self._session.execute(stmt)
        return [Account.model_validate(row) for row in res.scalars().all()]

    async def _loaded_account_row(self, account_id: str, expected_version: int) -> AccountRow:
        # may re-SELECT: the identity map only holds rows weakly
        row = await self._session.get(AccountRow, account_id)
        if row is None:
            raise ConcurrentUpdateError(f"Account disappeared during update: {account_id}")
        if row.version != expected_version:
            raise ConcurrentUpdateError(
                f"Account {account_id} is at version {row.version}, expected {expected_version}"
            )
        return row

    async def update_account(self, account: Account) -> Account:
        row = await self._loaded_account_row(account.id, account.version)
        row.name = account.name
        row.type = account.type.value
        row.balance = account.balance
        row.bank = account.bank
        row.updated_at = utcnow()
        await self._session.flush()
        return Account.model_validate(row)

    async def set_account_balance(
        self,
        account_id: str,
        balance: Decimal,
        expected_version: int,
    ) -> Account:
        row = await self._loaded_account_row(account_id, expected_version)
        row.balance = balance
        row.updated_at = utcnow()
        await self._session.flush()
        return Account.model_validate(row)

    async def delete_account(self, account_id: str) -> bool:
        res = await self._session.execute(
            delete(AccountRow).where(AccountRow.id == account_id)
        )
        return res.rowcount > 0

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        row = TransactionRow(
            id=transaction.id,
            amount=transaction.amount,
            description=transaction.description,
            category=transaction.category.value,
            type=transaction.type.value,
            date=transaction.date,
            account_id=transaction.account_id,
            user_id=transaction.user_id,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )
        self._session.add(row)
        await self._session.flush()
        return Transaction.model_validate(row)

    async def get_owned_transaction(
        self,
        transaction_id: str,
        owner_id: str,
    ) -> Optional[Transaction]:
        stmt = select(TransactionRow).where(
            TransactionRow.id == transaction_id,
            TransactionRow.user_id == owner_id,
        )
        res = await self._session.execute(stmt)
        row = res.scalar_one_or_none()
        return Transaction.model_validate(row) if row else None

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        row = await self._session.get(TransactionRow, transaction.id)
        if row is None:
            raise ConcurrentUpdateError(f"Transaction disappeared during update: {transaction.id}")
        row.amount = transaction.amount
        row.description = transaction.description
        row.category = transaction.category.value
        row.type = transaction.type.value
        row.date = transaction.date
        row.updated_at = utcnow()
        await self._session.flush()
        return Transaction.model_validate(row)

    async def delete_transaction(self, transaction_id: str) -> bool:
        res = await self._session.execute(
            delete(TransactionRow).where(TransactionRow.id == transaction_id)
        )
        return res.rowcount > 0

    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
    ) -> list[Transaction]:
        stmt = select(TransactionRow).where(TransactionRow.user_id == owner_id)
        if account_id:
            stmt = stmt.where(TransactionRow.account_id == account_id)
        stmt = stmt.order_by(TransactionRow.date.asc(), TransactionRow.created_at.asc())
        res = await self._session.execute(stmt)
        return [Transaction.model_validate(row) for row in res.scalars().all()]


class SqlAlchemyLedgerStorage(LedgerStorageInterface):
    """
    Async SQLAlchemy implementation of ledger storage.

    Works with any async driver URL (sqlite+aiosqlite, postgresql+asyncpg, ...).
    """

    def __init__(
        self,
        url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self._engine = engine or create_engine_from_settings(url)
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlAlchemyUnitOfWork]:
        session: AsyncSession = self._sessionmaker()
        try:
            yield SqlAlchemyUnitOfWork(session)
            await session.commit()
        except StaleDataError as e:
            await session.rollback()
            raise ConcurrentUpdateError(f"Concurrent update detected: {e}") from e
        except (DisconnectionError, DBAPIError) as e:
            await session.rollback()
            if isinstance(e, DBAPIError) and not e.connection_invalidated:
                raise StorageError(f"Database error: {e.orig}") from e
            raise ConnectionError(f"Lost connection to database: {e}") from e
        except SQLAlchemyError as e:
            await session.rollback()
            raise StorageError(f"Storage operation failed: {e}") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise ConnectionError(f"Failed to initialise schema: {e}") from e
        logger.info("schema_ready", dialect=self._engine.dialect.name)

    async def dispose(self) -> None:
        await self._engine.dispose()
