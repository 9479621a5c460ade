"""Audit logging package."""

from moneyar.audit.logger import AuditLogger, create_correlation_id, setup_logging

__all__ = ["AuditLogger", "create_correlation_id", "setup_logging"]
