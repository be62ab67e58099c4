"""
Ledger Models

The ledger is the derived, date-indexed table of per-day aggregates and
running balances. It is a cache of the transaction log: it holds no truth
of its own and can always be discarded and rebuilt.

Layout: year -> month (1-12) -> day -> LedgerEntry. The table is sparse:
only days that have ever been touched are present. The persisted shape
uses 0-based month keys ("0" = January) and formatted currency strings,
the format the diary has always stored.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from finance_diary.currency import ZERO, format_currency, parse_currency, to_amount
from finance_diary.models.transaction import TransactionKind

logger = structlog.get_logger(__name__)


# =============================================================================
# CALENDAR HELPERS
# =============================================================================

def is_leap_year(year: int) -> bool:
    return calendar.isleap(year)


def days_in_month(year: int, month: int) -> int:
    """Number of days in a month (month is 1-12)."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    return calendar.monthrange(year, month)[1]


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class LedgerEntry(BaseModel):
    """
    Aggregates for one day.

    credit/debit/incidental are sums of the day's transactions by kind.
    balance is derived by the cascade recalculator and never edited directly.
    """
    model_config = ConfigDict(validate_assignment=True)

    credit: Decimal = Field(default=ZERO, ge=0)
    debit: Decimal = Field(default=ZERO, ge=0)
    incidental: Decimal = Field(default=ZERO, ge=0)
    balance: Decimal = Field(default=ZERO)

    @property
    def net(self) -> Decimal:
        """Movement of the day: credit - debit - incidental."""
        return self.credit - self.debit - self.incidental

    def amount_for(self, kind: TransactionKind) -> Decimal:
        if kind is TransactionKind.CREDIT:
            return self.credit
        if kind is TransactionKind.DEBIT:
            return self.debit
        return self.incidental

    def same_aggregates(self, other: "LedgerEntry") -> bool:
        return (
            self.credit == other.credit
            and self.debit == other.debit
            and self.incidental == other.incidental
        )

    def to_storage_dict(self) -> dict:
        return {
            TransactionKind.CREDIT.value: format_currency(self.credit),
            TransactionKind.DEBIT.value: format_currency(self.debit),
            TransactionKind.INCIDENTAL.value: format_currency(self.incidental),
            "balance": float(self.balance),
        }

    @classmethod
    def from_storage_dict(cls, record: Mapping[str, Any]) -> "LedgerEntry":
        return cls(
            credit=parse_currency(record.get(TransactionKind.CREDIT.value)),
            debit=parse_currency(record.get(TransactionKind.DEBIT.value)),
            incidental=parse_currency(record.get(TransactionKind.INCIDENTAL.value)),
            balance=to_amount(record.get("balance") or 0),
        )


# =============================================================================
# LEDGER
# =============================================================================

class Ledger:
    """
    Sparse year/month/day table of LedgerEntry.

    Keys are always validated calendar dates, so a malformed day can never
    be stored. Equality is deep equality of every present entry.
    """

    def __init__(self) -> None:
        self._years: dict[int, dict[int, dict[int, LedgerEntry]]] = {}

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, day: date) -> Optional[LedgerEntry]:
        return self._years.get(day.year, {}).get(day.month, {}).get(day.day)

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.get(day) is not None

    def __len__(self) -> int:
        return sum(
            len(days)
            for months in self._years.values()
            for days in months.values()
        )

    def __bool__(self) -> bool:
        return len(self) > 0

    def ensure(self, day: date) -> LedgerEntry:
        """Return the entry for a day, creating an empty one if needed."""
        months = self._years.setdefault(day.year, {})
        days = months.setdefault(day.month, {})
        entry = days.get(day.day)
        if entry is None:
            entry = LedgerEntry()
            days[day.day] = entry
        return entry

    def set(self, day: date, entry: LedgerEntry) -> None:
        self._years.setdefault(day.year, {}).setdefault(day.month, {})[day.day] = entry

    def has_year(self, year: int) -> bool:
        return any(self._years.get(year, {}).values())

    def years(self) -> list[int]:
        return sorted(year for year in self._years if self.has_year(year))

    def months(self, year: int) -> list[int]:
        return sorted(
            month for month, days in self._years.get(year, {}).items() if days
        )

    def days(self, year: int, month: int) -> list[int]:
        return sorted(self._years.get(year, {}).get(month, {}))

    def dates(self) -> Iterator[date]:
        """All present dates in chronological order."""
        for year in self.years():
            for month in self.months(year):
                for day in self.days(year, month):
                    yield date(year, month, day)

    def items(self) -> Iterator[tuple[date, LedgerEntry]]:
        for day in self.dates():
            yield day, self.get(day)

    def earliest(self) -> Optional[date]:
        return next(self.dates(), None)

    def latest(self) -> Optional[date]:
        years = self.years()
        if not years:
            return None
        year = years[-1]
        month = self.months(year)[-1]
        return date(year, month, self.days(year, month)[-1])

    def last_in_month(self, year: int, month: int) -> Optional[LedgerEntry]:
        """Entry of the last present day of a month, if any."""
        days = self.days(year, month)
        if not days:
            return None
        return self._years[year][month][days[-1]]

    # ------------------------------------------------------------------
    # Copy / equality
    # ------------------------------------------------------------------

    def copy(self) -> "Ledger":
        """Deep copy; entries are not shared with the original."""
        clone = Ledger()
        for day, entry in self.items():
            clone.set(day, entry.model_copy())
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ledger):
            return NotImplemented
        return dict(self.items()) == dict(other.items())

    def __repr__(self) -> str:
        return f"Ledger(entries={len(self)}, first={self.earliest()}, last={self.latest()})"

    # ------------------------------------------------------------------
    # Storage shape
    # ------------------------------------------------------------------

    def to_storage_dict(self) -> dict:
        """Convert to the persisted JSON shape (0-based month keys)."""
        result: dict[str, dict] = {}
        for day, entry in self.items():
            result.setdefault(str(day.year), {}).setdefault(str(day.month - 1), {})[
                str(day.day)
            ] = entry.to_storage_dict()
        return result

    @classmethod
    def from_storage_dict(cls, data: Mapping[str, Any]) -> "Ledger":
        """
        Build a Ledger from the persisted JSON shape.

        Malformed year/month/day keys or entries are skipped and logged;
        the ledger is a cache and will be rebuilt from the log anyway.
        """
        ledger = cls()
        if not isinstance(data, Mapping):
            logger.warning("ledger_load_skipped", reason="not_a_mapping")
            return ledger

        for year_key, months in data.items():
            if not isinstance(months, Mapping):
                logger.warning("ledger_year_skipped", year=year_key)
                continue
            for month_key, days in months.items():
                if not isinstance(days, Mapping):
                    logger.warning("ledger_month_skipped", year=year_key, month=month_key)
                    continue
                for day_key, record in days.items():
                    try:
                        day = date(int(year_key), int(month_key) + 1, int(day_key))
                        if not isinstance(record, Mapping):
                            raise ValueError("entry is not an object")
                        ledger.set(day, LedgerEntry.from_storage_dict(record))
                    except (TypeError, ValueError) as e:
                        logger.warning(
                            "ledger_entry_skipped",
                            year=year_key,
                            month=month_key,
                            day=day_key,
                            error=str(e),
                        )
        return ledger
