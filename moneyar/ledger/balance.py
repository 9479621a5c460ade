"""
Balance arithmetic for the transaction lifecycle.

Amounts are stored as magnitudes; these helpers turn (type, amount)
pairs into signed balance movements. They never touch storage.
"""

from decimal import Decimal

from moneyar.models.ledger import TransactionType


def balance_effect(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """Signed movement a transaction applies to its account: +income, -expense."""
    if transaction_type == TransactionType.INCOME:
        return amount
    return -amount


def creation_delta(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    return balance_effect(transaction_type, amount)


def reversal_delta(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """Movement that undoes a transaction when it is deleted."""
    return -balance_effect(transaction_type, amount)


def adjustment_delta(
    old_type: TransactionType,
    old_amount: Decimal,
    new_type: TransactionType,
    new_amount: Decimal,
) -> Decimal:
    """
    Movement that turns the old effect into the new one.

    old_* must be the values currently stored, never values a client
    claims were there before.
    """
    return balance_effect(new_type, new_amount) - balance_effect(old_type, old_amount)
