"""
Cascade Recalculator

Recomputes running balances chronologically from a start date:

    balance(d) = balance(previous_day(d)) + credit(d) - debit(d) - incidental(d)

previous_day(d) is ledger-derived, not calendar-derived:
- the nearest earlier present day in the same year, or
- the last present day of December of the year before,
- otherwise there is nothing to carry and the carry is 0.

DESIGN DECISION: Year-end propagation seeds the next year.
When the last present December day of year Y closes with a non-zero balance
and Y+1 has no entries, a January 1st entry is created for Y+1 carrying
that balance. Y+1 then has no December of its own, so the chain settles
after one step. Every December close is checked, including those before
the start date, so seeds never depend on an earlier pass. Seeding is
capped at `max_lookahead_years` past the last populated year; hitting the
cap at or after the start date emits RecalculationOverflow.

The input ledger is never mutated.
"""

import warnings
from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from finance_diary.config import LedgerSettings, get_settings
from finance_diary.currency import ZERO
from finance_diary.models.ledger import Ledger, LedgerEntry

logger = structlog.get_logger(__name__)


class RecalculationOverflow(UserWarning):
    """A non-zero balance is still carrying at the propagation horizon."""

    def __init__(self, last_year: int, carry: Decimal):
        self.last_year = last_year
        self.carry = carry
        super().__init__(
            f"Balance {carry} still carrying after {last_year}; propagation stopped"
        )


def _carries_into(previous: date, day: date) -> bool:
    """Does the balance of `previous` carry into `day`?"""
    if previous.year == day.year:
        return True
    return previous.year == day.year - 1 and previous.month == 12


def previous_balance(ledger: Ledger, day: date) -> Decimal:
    """
    Balance carried into `day`.

    The day itself need not be present in the ledger.
    """
    earlier_days = [d for d in ledger.days(day.year, day.month) if d < day.day]
    if earlier_days:
        return ledger.get(date(day.year, day.month, earlier_days[-1])).balance

    earlier_months = [m for m in ledger.months(day.year) if m < day.month]
    if earlier_months:
        return ledger.last_in_month(day.year, earlier_months[-1]).balance

    december = ledger.last_in_month(day.year - 1, 12) if day.year > 1 else None
    return december.balance if december is not None else ZERO


class CascadeRecalculator:
    """
    Recomputes balances of a ledger.

    Stateless apart from its settings; one instance can be shared.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    @property
    def max_lookahead_years(self) -> int:
        return self._settings.max_lookahead_years

    def recalculate(self, ledger: Ledger, from_date: Optional[date] = None) -> Ledger:
        """
        Recompute balances from `from_date` (inclusive) to the end.

        Args:
            ledger: Ledger to recompute; left untouched
            from_date: First day to recompute; defaults to the earliest
                present day. Need not be present itself.

        Returns:
            A new Ledger with balances recomputed and next years seeded
        """
        result = ledger.copy()
        if not result:
            return result

        start = from_date or result.earliest()
        last_populated_year = result.years()[-1]
        horizon = min(last_populated_year + self.max_lookahead_years, date.max.year)

        previous: Optional[tuple[date, Decimal]] = None
        recomputed = 0
        overflow: Optional[RecalculationOverflow] = None

        for day in list(result.dates()):
            entry = result.get(day)
            if day >= start:
                carry = ZERO
                if previous is not None and _carries_into(previous[0], day):
                    carry = previous[1]
                entry.balance = carry + entry.net
                recomputed += 1
            previous = (day, entry.balance)

            if not self._closes_year(result, day):
                continue
            if entry.balance == ZERO or result.has_year(day.year + 1):
                continue

            next_year = day.year + 1
            if next_year > horizon:
                if day >= start:
                    overflow = RecalculationOverflow(day.year, entry.balance)
                continue
            result.set(date(next_year, 1, 1), LedgerEntry(balance=entry.balance))
            logger.debug(
                "year_seeded",
                year=next_year,
                carry=str(entry.balance),
            )

        if overflow is not None:
            logger.warning(
                "recalculation_overflow",
                last_year=overflow.last_year,
                carry=str(overflow.carry),
                max_lookahead_years=self.max_lookahead_years,
            )
            warnings.warn(overflow, stacklevel=2)

        logger.debug(
            "recalculated",
            from_date=start.isoformat(),
            recomputed=recomputed,
            entries=len(result),
        )
        return result

    @staticmethod
    def _closes_year(ledger: Ledger, day: date) -> bool:
        """Is `day` the last present day of its year's December?"""
        return day.month == 12 and ledger.days(day.year, 12)[-1] == day.day


def recalculate(
    ledger: Ledger,
    from_date: Optional[date] = None,
    settings: Optional[LedgerSettings] = None,
) -> Ledger:
    """Recompute balances with a one-off CascadeRecalculator."""
    return CascadeRecalculator(settings).recalculate(ledger, from_date)
