"""
Main Orchestrator for Moneyar

Ties the components together and defines the one flow that sits outside
the ledger itself:

1. Sign in (email → user row → session token → RequestContext)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The ledger never sees a token, only a resolved RequestContext
- A user row exists before any account can reference it
- Every step is audited
"""

from dataclasses import dataclass
from typing import Optional
from uuid import NAMESPACE_URL, uuid5

import structlog

from moneyar.audit import AuditLogger, setup_logging
from moneyar.config import get_settings
from moneyar.ledger.errors import ValidationError
from moneyar.ledger.service import LedgerService
from moneyar.models.ledger import ErrorCode, OperationResult, SignInInput
from moneyar.services.auth import InMemorySessionProvider, RequestContext
from moneyar.services.storage import LedgerStorageInterface, SqlAlchemyLedgerStorage
from moneyar.validation import LedgerValidator


logger = structlog.get_logger(__name__)


def user_id_for_email(email: str) -> str:
    """Stable user id for an email address (case-insensitive)."""
    return str(uuid5(NAMESPACE_URL, f"mailto:{email.strip().lower()}"))


class SignInFlow:
    """
    Orchestrates sign-in.

    Flow:
    1. Email → stable user id
    2. Ensure the user row exists (ledger.register_user)
    3. Issue a session token
    """

    def __init__(
        self,
        ledger: LedgerService,
        sessions: InMemorySessionProvider,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
    ):
        self._ledger = ledger
        self._sessions = sessions
        self._audit_logger = audit_logger
        self._validator = validator or LedgerValidator()

    async def sign_in(self, email: str, name: Optional[str] = None) -> OperationResult:
        """
        Returns:
            OperationResult with the issued Session as data
        """
        try:
            parsed, _ = self._validator.validate(
                SignInInput, {"email": email or "", "name": name}
            )
        except ValidationError as e:
            if self._audit_logger:
                self._audit_logger.log_validation_failed(
                    operation="sign_in",
                    user_id=None,
                    issues=[issue.model_dump() for issue in e.issues],
                )
            return OperationResult.fail(e.message, ErrorCode.VALIDATION, e.details)

        user_id = user_id_for_email(parsed.email)
        result = await self._ledger.register_user(
            user_id, email=parsed.email, name=parsed.name or None
        )
        if not result.success:
            return result

        session = self._sessions.issue(user_id)
        logger.info("signed_in", user_id=user_id)
        return OperationResult.ok(session)

    def sign_out(self, token: Optional[str]) -> None:
        if token and self._sessions.revoke(token):
            logger.info("signed_out")

    async def context_for(self, token: Optional[str]) -> Optional[RequestContext]:
        return await self._sessions.context_for(token)


@dataclass
class AppComponents:
    storage: LedgerStorageInterface
    ledger: LedgerService
    sessions: InMemorySessionProvider
    sign_in: SignInFlow
    audit_logger: AuditLogger


async def create_app_components(
    database_url: Optional[str] = None,
    init_schema: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        database_url: Overrides DATABASE_URL (tests pass a temp SQLite file).
        init_schema: Create missing tables before returning.

    Returns:
        AppComponents sharing one storage, audit logger and session store
    """
    settings = get_settings()
    setup_logging(settings.app.log_level)

    storage = SqlAlchemyLedgerStorage(url=database_url)
    if init_schema:
        await storage.init_schema()

    audit_logger = AuditLogger()
    ledger = LedgerService(storage, audit_logger=audit_logger, settings=settings.ledger)
    sessions = InMemorySessionProvider()

    return AppComponents(
        storage=storage,
        ledger=ledger,
        sessions=sessions,
        sign_in=SignInFlow(ledger, sessions, audit_logger, LedgerValidator(settings.ledger)),
        audit_logger=audit_logger,
    )
