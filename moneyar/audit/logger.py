"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Traceability of every balance movement
2. Debugging capability
3. A record of manual balance overrides

The audit logger:
- Writes structured JSON events through structlog
- Never raises (a logging failure must not fail a committed mutation)
- Supports correlation IDs to trace events from one request
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from moneyar.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def setup_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper(), force=True)


class AuditLogger:
    """
    Central audit logging service.

    Events go to the structured local log. Emitted events are also
    kept in memory (bounded) so the UI and tests can inspect them.
    """

    def __init__(self, history_size: int = 500):
        self._logger = structlog.get_logger("moneyar.audit")
        self._history: list[AuditEvent] = []
        self._history_size = history_size

    @property
    def history(self) -> list[AuditEvent]:
        return list(self._history)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if writing the log line failed.
        """
        self._history.append(event)
        if len(self._history) > self._history_size:
            del self._history[: len(self._history) - self._history_size]

        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            logging.getLogger(__name__).error("audit log write failed: %s", e)
            return False
        return True

    def log_account_created(
        self,
        account_id: str,
        user_id: str,
        name: str,
        balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log account creation."""
        self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            user_id=user_id,
            name=name,
            balance=balance,
            correlation_id=correlation_id,
        ))

    def log_account_updated(
        self,
        account_id: str,
        user_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_updated(
            account_id=account_id,
            user_id=user_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    def log_balance_overridden(
        self,
        account_id: str,
        user_id: str,
        old_balance: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a manual balance correction (bypasses transaction history)."""
        self.log(AuditEventBuilder.balance_overridden(
            account_id=account_id,
            user_id=user_id,
            old_balance=old_balance,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    def log_account_deleted(
        self,
        account_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_deleted(
            account_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_transaction_applied(
        self,
        event_type: AuditEventType,
        transaction_id: str,
        account_id: str,
        user_id: str,
        balance_delta: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction create/update/delete together with its balance movement."""
        self.log(AuditEventBuilder.transaction_applied(
            event_type=event_type,
            transaction_id=transaction_id,
            account_id=account_id,
            user_id=user_id,
            balance_delta=balance_delta,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    def log_authorization_denied(
        self,
        operation: str,
        user_id: Optional[str],
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.authorization_denied(
            operation=operation,
            user_id=user_id,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    def log_validation_failed(
        self,
        operation: str,
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.validation_failed(
            operation=operation,
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    def log_storage_failed(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.storage_failed(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_concurrent_update_retried(
        self,
        operation: str,
        attempt: int,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.concurrent_update_retried(
            operation=operation,
            attempt=attempt,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action and pass it through
    all subsequent operations.
    """
    return uuid4()
