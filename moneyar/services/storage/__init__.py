"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
Currently implements async SQLAlchemy as the backend, but designed to be swappable.
"""

from moneyar.services.storage.interface import (
    ConcurrentUpdateError,
    ConnectionError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
)
from moneyar.services.storage.sqlalchemy_store import (
    SqlAlchemyLedgerStorage,
    SqlAlchemyUnitOfWork,
    create_engine_from_settings,
)

__all__ = [
    # Interfaces
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # Exceptions
    "ConcurrentUpdateError",
    "ConnectionError",
    "StorageError",
    # SQLAlchemy implementation
    "SqlAlchemyLedgerStorage",
    "SqlAlchemyUnitOfWork",
    "create_engine_from_settings",
]
