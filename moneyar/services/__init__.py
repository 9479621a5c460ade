"""Services package."""

from moneyar.services.auth import (
    InMemorySessionProvider,
    RequestContext,
    Session,
    SessionProviderInterface,
)
from moneyar.services.storage import (
    ConcurrentUpdateError,
    ConnectionError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SqlAlchemyLedgerStorage,
    StorageError,
)

__all__ = [
    # Auth services
    "InMemorySessionProvider",
    "RequestContext",
    "Session",
    "SessionProviderInterface",
    # Storage services
    "ConcurrentUpdateError",
    "ConnectionError",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "SqlAlchemyLedgerStorage",
    "StorageError",
]
