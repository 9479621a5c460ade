"""
Shared fixtures.

Every test gets its own SQLite file under tmp_path, so the real
SQLAlchemy store (foreign keys, cascades, versioning) is exercised
without any shared state between tests.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from moneyar.audit import AuditLogger
from moneyar.config import LedgerSettings
from moneyar.ledger.service import LedgerService
from moneyar.services.auth import RequestContext
from moneyar.services.storage import SqlAlchemyLedgerStorage


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = SqlAlchemyLedgerStorage(url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await store.init_schema()
    yield store
    await store.dispose()


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        currency="USD",
        conflict_retry_attempts=3,
        max_transaction_amount=Decimal("1000000"),
        future_date_tolerance_days=366,
        recent_activity_limit=5,
    )


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest_asyncio.fixture
async def ledger(storage, audit_logger, ledger_settings):
    service = LedgerService(storage, audit_logger=audit_logger, settings=ledger_settings)
    for user_id in ("alice", "bob"):
        result = await service.register_user(user_id, email=f"{user_id}@example.com")
        assert result.success, result.error
    return service


@pytest.fixture
def alice():
    return RequestContext(user_id="alice")


@pytest.fixture
def bob():
    return RequestContext(user_id="bob")
