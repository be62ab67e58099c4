"""
Period Totals

Read-only summaries over the ledger: totals by kind and the closing
balance of a month, a year or an arbitrary date range.

DESIGN DECISION: Totals are DETERMINISTIC reads of the derived ledger.
Nothing is estimated: a period with no entries reports zeros and
`data_found=False`.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from finance_diary.currency import ZERO, format_currency
from finance_diary.models.ledger import Ledger, LedgerEntry


class PeriodTotals(BaseModel):
    """Totals for a span of days."""

    description: str = Field(..., description="Human-readable span")
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    total_incidental: Decimal = ZERO
    closing_balance: Decimal = Field(
        default=ZERO,
        description="Balance of the last present day in the span"
    )
    days: int = Field(default=0, description="Present days in the span")

    @property
    def data_found(self) -> bool:
        return self.days > 0

    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit - self.total_incidental

    def to_display_dict(self) -> dict:
        """Formatted amounts, as shown in month and year summaries."""
        return {
            "description": self.description,
            "entrada": format_currency(self.total_credit),
            "saida": format_currency(self.total_debit),
            "diario": format_currency(self.total_incidental),
            "saldoFinal": format_currency(self.closing_balance),
        }


class LedgerTotals:
    """
    Computes PeriodTotals from a ledger.
    """

    def __init__(self, ledger: Ledger):
        self._ledger = ledger

    def monthly(self, year: int, month: int) -> PeriodTotals:
        """Totals of one month (1-12)."""
        entries = [
            self._ledger.get(date(year, month, day))
            for day in self._ledger.days(year, month)
        ]
        return self._sum(entries, f"in {date(year, month, 1).strftime('%B %Y')}")

    def yearly(self, year: int) -> PeriodTotals:
        """Totals of one year; the closing balance is the last present day's."""
        entries = [
            self._ledger.get(date(year, month, day))
            for month in self._ledger.months(year)
            for day in self._ledger.days(year, month)
        ]
        return self._sum(entries, f"in {year}")

    def between(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> PeriodTotals:
        """Totals of every present day in [date_from, date_to]."""
        entries = [
            entry for day, entry in self._ledger.items()
            if (date_from is None or day >= date_from)
            and (date_to is None or day <= date_to)
        ]
        return self._sum(entries, self._date_range_str(date_from, date_to))

    def balance_on(self, day: date) -> Optional[Decimal]:
        """Balance of a present day, None if the day has no entry."""
        entry = self._ledger.get(day)
        return entry.balance if entry is not None else None

    def _sum(self, entries: list[LedgerEntry], description: str) -> PeriodTotals:
        totals = PeriodTotals(description=description)
        if not entries:
            return totals
        return PeriodTotals(
            description=description,
            total_credit=sum((e.credit for e in entries), ZERO),
            total_debit=sum((e.debit for e in entries), ZERO),
            total_incidental=sum((e.incidental for e in entries), ZERO),
            closing_balance=entries[-1].balance,
            days=len(entries),
        )

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            else:
                return f"from {date_from.strftime('%d %b %Y')} to {date_to.strftime('%d %b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return "all time"


def monthly_totals(ledger: Ledger, year: int, month: int) -> PeriodTotals:
    return LedgerTotals(ledger).monthly(year, month)


def yearly_totals(ledger: Ledger, year: int) -> PeriodTotals:
    return LedgerTotals(ledger).yearly(year)
