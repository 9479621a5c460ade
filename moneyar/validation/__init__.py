"""Input validation package."""

from moneyar.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
