"""Read-side aggregations over ledger data."""

from moneyar.queries.summary import (
    build_dashboard_summary,
    month_bounds,
    sort_recent,
    totals_by_category,
    totals_by_type,
)

__all__ = [
    "build_dashboard_summary",
    "month_bounds",
    "sort_recent",
    "totals_by_category",
    "totals_by_type",
]
