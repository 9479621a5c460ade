"""
Dashboard Summary

DESIGN DECISION: Summaries are computed DETERMINISTICALLY from the
accounts and transactions the ledger returns. Nothing is cached or
stored; the numbers are always a pure function of current rows.
"""

from calendar import monthrange
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, Optional

from moneyar.models.ledger import (
    Account,
    DashboardSummary,
    Transaction,
    TransactionType,
)


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of the month containing day."""
    last = monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def sort_recent(transactions: Iterable[Transaction]) -> list[Transaction]:
    """
    Most recent activity first.

    The ledger lists transactions by date ascending; this is the re-sort
    a "latest activity" view needs.
    """
    return sorted(
        transactions,
        key=lambda t: (t.date, t.created_at),
        reverse=True,
    )


def totals_by_type(transactions: Iterable[Transaction]) -> tuple[Decimal, Decimal]:
    """(income, expenses) as positive magnitudes."""
    income = Decimal("0")
    expenses = Decimal("0")
    for t in transactions:
        if t.type == TransactionType.INCOME:
            income += t.amount
        else:
            expenses += t.amount
    return income, expenses


def totals_by_category(transactions: Iterable[Transaction]) -> dict[str, Decimal]:
    """Net signed amount per category."""
    totals: dict[str, Decimal] = {}
    for t in transactions:
        key = t.category.value
        totals[key] = totals.get(key, Decimal("0")) + t.signed_amount
    return totals


def build_dashboard_summary(
    accounts: list[Account],
    transactions: list[Transaction],
    currency: str,
    today: Optional[date] = None,
    recent_limit: int = 5,
) -> DashboardSummary:
    """
    Aggregate one user's rows into the dashboard overview.

    Period figures cover the calendar month containing today.
    """
    today = today or date.today()
    start, end = month_bounds(today)
    start_dt = datetime.combine(start, time.min)
    end_dt = datetime.combine(end, time.max)

    in_period = [t for t in transactions if start_dt <= t.date <= end_dt]
    income, expenses = totals_by_type(in_period)

    return DashboardSummary(
        currency=currency,
        total_balance=sum((a.balance for a in accounts), Decimal("0")),
        account_count=len(accounts),
        period_start=start,
        period_end=end,
        period_transaction_count=len(in_period),
        period_income=income,
        period_expenses=expenses,
        recent_transactions=sort_recent(transactions)[:recent_limit],
    )
