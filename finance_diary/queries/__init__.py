"""Read-only queries over the ledger."""

from finance_diary.queries.totals import (
    LedgerTotals,
    PeriodTotals,
    monthly_totals,
    yearly_totals,
)

__all__ = ["LedgerTotals", "PeriodTotals", "monthly_totals", "yearly_totals"]
