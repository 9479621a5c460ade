"""
Relational schema for the ledger.

Two ledger tables (accounts, transactions) plus the users table the
identity provider owns. Deleting an account cascades to its
transactions in the database itself.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from moneyar.models.ledger import (
    AccountType,
    TransactionCategory,
    TransactionType,
    utcnow,
)

Base = declarative_base()

MONEY = Numeric(14, 2)


def _in_check(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True, unique=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class AccountRow(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    balance = Column(MONEY, nullable=False, default=0)
    bank = Column(String(255), nullable=True)
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # bumped by the ORM on every UPDATE; a stale write raises StaleDataError
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("type", AccountType), name="ck_accounts_type"),
    )


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    amount = Column(MONEY, nullable=False)          # magnitude only
    description = Column(Text, nullable=False)
    category = Column(String(30), nullable=False)
    type = Column(String(10), nullable=False)       # 'income' | 'expense'
    date = Column(DateTime, nullable=False, index=True)
    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount_magnitude"),
        CheckConstraint(_in_check("type", TransactionType), name="ck_transactions_type"),
        CheckConstraint(
            _in_check("category", TransactionCategory),
            name="ck_transactions_category",
        ),
    )
